"""Persistence for timed exams built from tracked items."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from mistakebook.state.filesystem import LocalFileSystem
from mistakebook.state.models import DEFAULT_ANSWER_TIME_LIMIT, TrackedItem
from mistakebook.timeutils import Clock, utcnow

from .models import ExamItem, ExamItemPatch, ExamPatch, ExamRecord

LOGGER = logging.getLogger(__name__)

ONGOING_DIRNAME = "ongoing"
COMPLETED_DIRNAME = "completed"


class ExamManager:
    """Store exams as one JSON file each, split by status.

    Lookups of unknown exams return None/False rather than raising, so callers can
    treat a stale exam id as a soft failure.
    """

    def __init__(
        self,
        exams_dir: Path,
        *,
        base_dir: Path | None = None,
        filesystem: LocalFileSystem | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Prepare the exam directories.

        Args:
            exams_dir: Directory holding ``ongoing/`` and ``completed/``.
            base_dir: Collection base directory used to resolve previews.
            filesystem: Filesystem collaborator.
            clock: Source of the current time.
        """
        self._exams_dir = Path(exams_dir).expanduser()
        self._base_dir = Path(base_dir).expanduser() if base_dir else None
        self._fs = filesystem or LocalFileSystem()
        self._clock = clock
        for name in (ONGOING_DIRNAME, COMPLETED_DIRNAME):
            self._fs.mkdir(self._exams_dir / name)

    @property
    def exams_dir(self) -> Path:
        return self._exams_dir

    def create_exam(self, items: Sequence[TrackedItem]) -> ExamRecord:
        """Start an exam over ``items`` using each item's answer time limit."""
        exam_items = [
            ExamItem(
                file_id=item.id,
                time_limit=item.answer_time_limit or DEFAULT_ANSWER_TIME_LIMIT,
                preview=str(self._base_dir / item.relative_path) if self._base_dir else "",
            )
            for item in items
        ]
        exam = ExamRecord(
            id=uuid.uuid4().hex,
            start_time=self._clock(),
            items=exam_items,
            total_time=sum(entry.time_limit for entry in exam_items),
        )
        self._save(exam)
        LOGGER.info("Created exam %s with %d item(s).", exam.id, len(exam_items))
        return exam

    def get_exam(self, exam_id: str) -> ExamRecord | None:
        """Return the exam with ``exam_id`` from either status directory.

        Args:
            exam_id: Identifier returned by ``create_exam``.

        Returns:
            ExamRecord | None: The exam, or None when it is unknown or unreadable.
        """
        path = self._find(exam_id)
        if path is None:
            return None
        return self._read(path)

    def list_exams(self) -> list[ExamRecord]:
        """Return every readable exam, newest first."""
        exams: list[ExamRecord] = []
        for name in (ONGOING_DIRNAME, COMPLETED_DIRNAME):
            for path in sorted((self._exams_dir / name).glob("*.json")):
                exam = self._read(path)
                if exam is not None:
                    exams.append(exam)
        return sorted(exams, key=lambda exam: exam.start_time, reverse=True)

    def update_exam(self, exam_id: str, patch: ExamPatch | Mapping[str, Any]) -> bool:
        """Merge ``patch`` into an exam; False when the exam or patch is rejected."""
        exam = self.get_exam(exam_id)
        if exam is None:
            return False
        try:
            typed = patch if isinstance(patch, ExamPatch) else ExamPatch.model_validate(patch)
        except ValidationError as exc:
            LOGGER.error("Rejected update for exam %s: %s", exam_id, exc)
            return False
        self._save(exam.model_copy(update=typed.model_dump(exclude_unset=True)))
        return True

    def update_exam_item(
        self, exam_id: str, index: int, patch: ExamItemPatch | Mapping[str, Any]
    ) -> bool:
        """Merge ``patch`` into the question at ``index``.

        Returns:
            bool: False when the exam is unknown, the index is out of range, or
                the patch does not validate.
        """
        exam = self.get_exam(exam_id)
        if exam is None or not 0 <= index < len(exam.items):
            return False
        try:
            typed = (
                patch if isinstance(patch, ExamItemPatch) else ExamItemPatch.model_validate(patch)
            )
        except ValidationError as exc:
            LOGGER.error("Rejected update for exam %s item %d: %s", exam_id, index, exc)
            return False
        items = list(exam.items)
        items[index] = items[index].model_copy(update=typed.model_dump(exclude_unset=True))
        self._save(exam.model_copy(update={"items": items}))
        return True

    def complete_exam(self, exam_id: str) -> bool:
        """Mark an exam completed and start grading at the first question."""
        exam = self.get_exam(exam_id)
        if exam is None:
            return False
        completed = exam.model_copy(
            update={
                "status": "completed",
                "end_time": self._clock(),
                "is_grading": True,
                "grading_index": 0,
            }
        )
        self._save(completed)
        ongoing = self._path(exam_id, ONGOING_DIRNAME)
        if self._fs.exists(ongoing):
            self._fs.delete(ongoing)
        return True

    def delete_exam(self, exam_id: str) -> bool:
        """Delete an exam file; False when no exam has that id."""
        path = self._find(exam_id)
        if path is None:
            return False
        self._fs.delete(path)
        return True

    # Internal helpers -------------------------------------------------

    def _path(self, exam_id: str, status_dir: str) -> Path:
        return self._exams_dir / status_dir / f"{exam_id}.json"

    def _find(self, exam_id: str) -> Path | None:
        for name in (ONGOING_DIRNAME, COMPLETED_DIRNAME):
            path = self._path(exam_id, name)
            if self._fs.exists(path):
                return path
        return None

    def _read(self, path: Path) -> ExamRecord | None:
        try:
            return ExamRecord.model_validate_json(self._fs.read_text(path))
        except (OSError, UnicodeDecodeError, ValidationError) as exc:
            LOGGER.error("Unable to read exam record %s: %s", path, exc)
            return None

    def _save(self, exam: ExamRecord) -> None:
        status_dir = COMPLETED_DIRNAME if exam.status == "completed" else ONGOING_DIRNAME
        text = json.dumps(exam.to_json_dict(), indent=2, ensure_ascii=False)
        self._fs.write_text_atomic(self._path(exam.id, status_dir), text)


__all__ = ["ExamManager", "ExamRecord", "ExamItem", "ExamPatch", "ExamItemPatch"]
