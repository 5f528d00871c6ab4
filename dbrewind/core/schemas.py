"""
Rewind core. Do not implement beyond this file's responsibilities.
Run report models for JSON output.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict
from datetime import datetime

from .timepoint import TOKEN_PATTERN

VALID_OUTCOMES = [
    "restore",
    "keep_pre_event",
    "archive_post_event",
    "delete_non_recoverable",
    "skip_error"
]


def _check_token(v):
    if v is not None and not TOKEN_PATTERN.fullmatch(v):
        raise ValueError('timepoint must be a YYYYMMDD_HHMMSS token')
    return v


class MigrationEventModel(BaseModel):
    trigger: str
    reference: str
    sentinel_count: int
    earliest_sentinel: str
    sentinel_names: List[str] = []

    @field_validator('trigger', 'reference')
    @classmethod
    def timepoints_must_be_tokens(cls, v):
        return _check_token(v)

    @classmethod
    def from_event(cls, event) -> "MigrationEventModel":
        return cls(**event.to_dict())


class PlanItemModel(BaseModel):
    path: str
    logical_name: str
    outcome: str
    reason: str
    backup: Optional[str] = None
    backup_timepoint: Optional[str] = None
    applied: bool = False
    error: Optional[str] = None
    rollback_errors: List[str] = []

    @field_validator('outcome')
    @classmethod
    def outcome_must_be_valid(cls, v):
        if v not in VALID_OUTCOMES:
            raise ValueError(f'outcome must be one of: {VALID_OUTCOMES}')
        return v

    @field_validator('backup_timepoint')
    @classmethod
    def backup_timepoint_must_be_token(cls, v):
        return _check_token(v)


class RunReportModel(BaseModel):
    root: str
    reference: str
    reference_source: str
    run_timepoint: str
    preview: bool
    started_at: datetime
    completed_at: Optional[datetime] = None
    counters: Dict[str, int]
    events: List[MigrationEventModel] = []
    items: List[PlanItemModel] = []

    @field_validator('reference', 'run_timepoint')
    @classmethod
    def timepoints_must_be_tokens(cls, v):
        return _check_token(v)

    @classmethod
    def from_report(cls, report, root: str, reference_source: str, events=()) -> "RunReportModel":
        data = report.to_dict()
        return cls(
            root=root,
            reference=data["reference"],
            reference_source=reference_source,
            run_timepoint=data["run_timepoint"],
            preview=data["preview"],
            started_at=report.started_at,
            completed_at=report.completed_at,
            counters=data["counters"],
            events=[MigrationEventModel.from_event(event) for event in events],
            items=[PlanItemModel(**item) for item in data["items"]]
        )
