"""State management errors."""


class StateError(Exception):
    """Base exception for metadata store operations."""


class MissingStateError(StateError):
    """Raised when a file an operation depends on does not exist."""


class ItemNotFoundError(StateError):
    """Raised when an item id is not tracked by the store."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"No tracked item with id {item_id!r}")
        self.item_id = item_id


class DuplicateContentError(StateError):
    """Raised when content identical to a tracked item is added again."""

    def __init__(self, path: str, existing_id: str) -> None:
        super().__init__(f"{path} already exists in this collection (item {existing_id}).")
        self.path = path
        self.existing_id = existing_id


class PairingError(StateError):
    """Raised when two items cannot be paired."""
