"""Event-sourced WU state: log, indexer, lifecycle store and delegations."""

from wuflow.core.state.delegation import (
    DELEGATION_STATUSES,
    DelegationEvent,
    DelegationNotFoundError,
    DelegationRegistry,
    DelegationRegistryError,
    DelegationStatus,
    generate_delegation_id,
)
from wuflow.core.state.event_log import WUEventLog, WUEventLogError
from wuflow.core.state.events import (
    WUEvent,
    WUEventRecord,
    WUEventType,
    WUEventValidationError,
    build_wu_event,
    parse_event_type,
    validate_event,
    wu_event_from_record,
    wu_event_to_record,
)
from wuflow.core.state.indexer import WU_STATUSES, WUState, WUStateIndexer, WUStatus
from wuflow.core.state.store import WUStateStore, WUTransitionError

__all__ = [
    "DELEGATION_STATUSES",
    "WU_STATUSES",
    "DelegationEvent",
    "DelegationNotFoundError",
    "DelegationRegistry",
    "DelegationRegistryError",
    "DelegationStatus",
    "WUEvent",
    "WUEventLog",
    "WUEventLogError",
    "WUEventRecord",
    "WUEventType",
    "WUEventValidationError",
    "WUState",
    "WUStateIndexer",
    "WUStateStore",
    "WUStatus",
    "WUTransitionError",
    "build_wu_event",
    "generate_delegation_id",
    "parse_event_type",
    "validate_event",
    "wu_event_from_record",
    "wu_event_to_record",
]
