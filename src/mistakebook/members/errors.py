"""Member management errors."""


class MemberError(Exception):
    """Base exception for member operations."""


class MemberExistsError(MemberError):
    """Raised when creating a member whose name is taken."""


class MemberNotFoundError(MemberError):
    """Raised when a member name is unknown."""


class MemberInUseError(MemberError):
    """Raised when deleting the currently selected member."""
