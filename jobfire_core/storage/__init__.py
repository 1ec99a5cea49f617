# Job result storage backends

from jobfire_core.storage.base import (
    JobStore,
    apply_result,
    build_execution_record,
    counter_increments,
)
from jobfire_core.storage.memory import InMemoryJobStore

__all__ = [
    "JobStore",
    "InMemoryJobStore",
    "apply_result",
    "build_execution_record",
    "counter_increments",
]
