"""Exam (timed quiz) data models."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import ConfigDict, Field

from mistakebook.state.models import StateModel, TrainingResult, UTCDateTime

ExamStatus = Literal["ongoing", "completed"]
ExamItemStatus = Literal["pending", "answered", "timeout", "skipped"]


class ExamItem(StateModel):
    """One question in an exam.

    Attributes:
        file_id: Tracked item shown for this question.
        time_limit: Seconds allotted to answer.
        time_spent: Seconds used so far.
        status: Answering state.
        preview: Absolute path of the image at exam creation time.
        result: Grading outcome once graded.
    """

    file_id: str
    time_limit: int = Field(ge=1)
    time_spent: int = Field(default=0, ge=0)
    status: ExamItemStatus = "pending"
    preview: str = ""
    result: Optional[TrainingResult] = None


class ExamRecord(StateModel):
    """A timed exam over a set of tracked items."""

    id: str
    start_time: UTCDateTime
    end_time: Optional[UTCDateTime] = None
    status: ExamStatus = "ongoing"
    current_index: int = Field(default=0, ge=0)
    is_grading: bool = False
    grading_index: Optional[int] = None
    items: List[ExamItem] = Field(default_factory=list)
    total_time: int = 0
    used_time: int = Field(default=0, ge=0)


class ExamPatch(StateModel):
    """Partial update for an exam record."""

    model_config = ConfigDict(extra="forbid")

    current_index: Optional[int] = Field(default=None, ge=0)
    is_grading: Optional[bool] = None
    grading_index: Optional[int] = None
    used_time: Optional[int] = Field(default=None, ge=0)


class ExamItemPatch(StateModel):
    """Partial update for one exam question."""

    model_config = ConfigDict(extra="forbid")

    time_spent: Optional[int] = Field(default=None, ge=0)
    status: Optional[ExamItemStatus] = None
    result: Optional[TrainingResult] = None


__all__ = [
    "ExamStatus",
    "ExamItemStatus",
    "ExamItem",
    "ExamRecord",
    "ExamPatch",
    "ExamItemPatch",
]
