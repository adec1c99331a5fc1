from .fetch import FetchRequest, FetchResult, FetchSnapshot
from .job import JobState, JobStatus
from .mutation import (
    MISSING,
    AggregateDelta,
    MutationIntent,
    MutationOutcome,
    MutationStatus,
)
from .query import FieldSpec, FieldType, QuerySchema

__all__ = [
    "FetchRequest",
    "FetchResult",
    "FetchSnapshot",
    "JobState",
    "JobStatus",
    "MISSING",
    "AggregateDelta",
    "MutationIntent",
    "MutationOutcome",
    "MutationStatus",
    "FieldSpec",
    "FieldType",
    "QuerySchema",
]
