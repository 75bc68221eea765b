"""Per-learner collections ("members"), each with its own metadata store."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from mistakebook.exams import ExamManager
from mistakebook.state import METADATA_FILENAME, MetadataStore, MigrationResult
from mistakebook.state.filesystem import LocalFileSystem
from mistakebook.state.hashing import HashComputer
from mistakebook.state.models import DEFAULT_ANSWER_TIME_LIMIT, StateModel, UTCDateTime
from mistakebook.timeutils import Clock, utcnow

from .errors import MemberError, MemberExistsError, MemberInUseError, MemberNotFoundError

LOGGER = logging.getLogger(__name__)

REGISTRY_FILENAME = "members.json"
IMAGES_DIRNAME = "images"
EXAMS_DIRNAME = "exams"
DEFAULT_MEMBER = "default"
_NAME_PATTERN = re.compile(r"^\w[\w .-]{0,63}$")


class MemberInfo(StateModel):
    """A registered member.

    Attributes:
        name: Member name, also its directory name under the root.
        created_at: Creation time.
        base_dir: Collection directory after a storage migration; None means
            the default ``<root>/<name>/images``.
    """

    name: str
    created_at: UTCDateTime
    base_dir: Optional[str] = None


class MemberRegistry(StateModel):
    """Registry of members and the current selection."""

    version: str = "1.0"
    current: Optional[str] = None
    members: Dict[str, MemberInfo] = {}


class MemberManager:
    """Manage members under a shared root and track the current one.

    Exactly one member is current. The manager owns the active store, so
    switching members swaps which store receives subsequent operations.
    """

    def __init__(
        self,
        root: Path,
        *,
        default_member: str = DEFAULT_MEMBER,
        metadata_filename: str = METADATA_FILENAME,
        filesystem: LocalFileSystem | None = None,
        hasher: HashComputer | None = None,
        clock: Clock = utcnow,
        answer_time_limit: int = DEFAULT_ANSWER_TIME_LIMIT,
    ) -> None:
        """Load the registry, creating and selecting a default member if needed.

        Args:
            root: Directory that holds every member.
            default_member: Member created on first run.
            metadata_filename: Metadata file name used by each store.
            filesystem: Filesystem collaborator shared with the stores.
            hasher: Content hasher shared with the stores.
            clock: Source of the current time.
            answer_time_limit: Seconds per question given to new items.

        Raises:
            MemberError: If the registry file cannot be parsed.
        """
        self._root = Path(root).expanduser().resolve()
        self._default_member = default_member
        self._metadata_filename = metadata_filename
        self._fs = filesystem or LocalFileSystem()
        self._hasher = hasher or HashComputer()
        self._clock = clock
        self._answer_time_limit = answer_time_limit
        self._stores: dict[str, MetadataStore] = {}

        self._fs.mkdir(self._root)
        self._registry = self._load_registry()
        self._ensure_current()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def registry_path(self) -> Path:
        return self._root / REGISTRY_FILENAME

    def member_dir(self, name: str) -> Path:
        return self._root / name

    def images_dir(self, name: str) -> Path:
        """Return the collection directory of ``name``.

        A relocated member keeps its collection at the recorded ``baseDir``;
        otherwise it lives under ``<root>/<name>/images``.
        """
        info = self._registry.members.get(name)
        if info is not None and info.base_dir:
            return Path(info.base_dir)
        return self.member_dir(name) / IMAGES_DIRNAME

    def exams_dir(self, name: str) -> Path:
        return self.member_dir(name) / EXAMS_DIRNAME

    # Registry ---------------------------------------------------------------

    def _load_registry(self) -> MemberRegistry:
        path = self.registry_path
        if not self._fs.exists(path):
            return MemberRegistry()
        try:
            return MemberRegistry.model_validate(json.loads(self._fs.read_text(path)))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
            raise MemberError(f"Invalid member registry {path}: {exc}") from exc

    def _save_registry(self) -> None:
        text = json.dumps(self._registry.to_json_dict(), indent=2, ensure_ascii=False)
        self._fs.write_text_atomic(self.registry_path, text)

    def _ensure_current(self) -> None:
        current = self._registry.current
        if current and current in self._registry.members:
            return
        if not self._registry.members:
            LOGGER.info("No members found; creating %r.", self._default_member)
            self.create(self._default_member)
            fallback = self._default_member
        elif self._default_member in self._registry.members:
            fallback = self._default_member
        else:
            fallback = sorted(self._registry.members)[0]
        self._registry.current = fallback
        self._save_registry()

    # Operations -------------------------------------------------------------

    def create(self, name: str) -> MemberInfo:
        """Provision a new member with an empty metadata store.

        Raises:
            MemberError: If the name is not usable as a directory name.
            MemberExistsError: If the member already exists.
        """
        name = self._validate_name(name)
        if name in self._registry.members:
            raise MemberExistsError(f"Member {name!r} already exists.")

        self._fs.mkdir(self.images_dir(name))
        self._fs.mkdir(self.exams_dir(name))
        store = self._open_store(name)
        store.save_metadata()

        info = MemberInfo(name=name, created_at=self._clock())
        self._registry.members[name] = info
        self._save_registry()
        LOGGER.info("Created member %r at %s.", name, self.member_dir(name))
        return info

    def switch(self, name: str) -> MetadataStore:
        """Make ``name`` the current member and return its store.

        Raises:
            MemberNotFoundError: If the member does not exist.
        """
        if name not in self._registry.members:
            raise MemberNotFoundError(f"Member {name!r} does not exist.")
        self._registry.current = name
        self._save_registry()
        LOGGER.info("Switched to member %r.", name)
        return self.store_for(name)

    def delete(self, name: str, *, purge: bool = True) -> None:
        """Remove a member and, with ``purge``, its directory tree.

        Raises:
            MemberNotFoundError: If the member does not exist.
            MemberInUseError: If the member is the current one.
        """
        if name not in self._registry.members:
            raise MemberNotFoundError(f"Member {name!r} does not exist.")
        if name == self._registry.current:
            raise MemberInUseError(f"Member {name!r} is in use; switch to another member first.")

        del self._registry.members[name]
        self._stores.pop(name, None)
        self._save_registry()
        directory = self.member_dir(name)
        if purge and self._fs.exists(directory):
            self._fs.remove_tree(directory)
        LOGGER.info("Deleted member %r.", name)

    def migrate(self, name: str, new_base_dir: Path) -> MigrationResult:
        """Relocate a member's collection and remember the new location.

        Raises:
            MemberNotFoundError: If the member does not exist.
        """
        store = self.store_for(name)
        result = store.migrate_storage(new_base_dir)
        if result.success:
            info = self._registry.members[name]
            self._registry.members[name] = info.model_copy(
                update={"base_dir": str(store.base_dir)}
            )
            self._save_registry()
        return result

    def list(self) -> list[MemberInfo]:
        """Return all members sorted by name."""
        return [self._registry.members[name] for name in sorted(self._registry.members)]

    def get_current(self) -> MemberInfo:
        """Return the selected member.

        Raises:
            MemberError: If the registry no longer names a current member.
        """
        current = self._registry.current
        if current is None or current not in self._registry.members:
            raise MemberError("No current member is selected.")
        return self._registry.members[current]

    @property
    def store(self) -> MetadataStore:
        """Metadata store of the current member."""
        return self.store_for(self.get_current().name)

    @property
    def exams(self) -> ExamManager:
        """Exam manager of the current member."""
        name = self.get_current().name
        return ExamManager(
            self.exams_dir(name),
            base_dir=self.store_for(name).base_dir,
            filesystem=self._fs,
            clock=self._clock,
        )

    def store_for(self, name: str) -> MetadataStore:
        """Return the metadata store of ``name``, opening it on first use.

        Args:
            name: Registered member name.

        Returns:
            MetadataStore: Cached store for the member's collection.

        Raises:
            MemberNotFoundError: If no member has that name.
            StateError: If the member's metadata file is unreadable.
        """
        if name not in self._registry.members:
            raise MemberNotFoundError(f"Member {name!r} does not exist.")
        return self._open_store(name)

    def _open_store(self, name: str) -> MetadataStore:
        store = self._stores.get(name)
        if store is None:
            store = MetadataStore(
                self.images_dir(name),
                metadata_filename=self._metadata_filename,
                filesystem=self._fs,
                hasher=self._hasher,
                clock=self._clock,
                answer_time_limit=self._answer_time_limit,
            )
            self._stores[name] = store
        return store

    def _validate_name(self, name: str) -> str:
        cleaned = (name or "").strip()
        if not _NAME_PATTERN.match(cleaned) or cleaned == REGISTRY_FILENAME:
            raise MemberError(
                f"Invalid member name {name!r}; use letters, digits, spaces, '.', '-' or '_'."
            )
        return cleaned


__all__ = [
    "MemberManager",
    "MemberInfo",
    "MemberRegistry",
    "MemberError",
    "MemberExistsError",
    "MemberNotFoundError",
    "MemberInUseError",
    "DEFAULT_MEMBER",
]
