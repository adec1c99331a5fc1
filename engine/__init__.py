from .cancellation import CancellationToken
from .codec import QueryStateCodec
from .debounce import DebouncedValue
from .errors import (
    CancellationError,
    ConsoleError,
    JobTimeoutError,
    NetworkError,
    ServerError,
    ValidationError,
)
from .fetch_controller import PaginatedFetchController
from .job_poller import JobPoller
from .observable import Listeners
from .optimistic import AggregateCounters, OptimisticActionManager, PendingMutation

# state_store, views and list_view import from storage/ and clients/, which in
# turn import from this package; import them by module path.

__all__ = [
    "CancellationToken",
    "QueryStateCodec",
    "DebouncedValue",
    "CancellationError",
    "ConsoleError",
    "JobTimeoutError",
    "NetworkError",
    "ServerError",
    "ValidationError",
    "PaginatedFetchController",
    "JobPoller",
    "Listeners",
    "AggregateCounters",
    "OptimisticActionManager",
    "PendingMutation",
]
