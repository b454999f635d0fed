from slotdesk.integrations.providers.base import (
    AppointmentDraft,
    AppointmentRecord,
    AppointmentStore,
    BusyInterval,
    BusySource,
    ConstraintKind,
    DeleteOutcome,
    EventCounter,
    EventPayload,
    EventSink,
    InventorySource,
    ResourceInfo,
    UpsertResult,
    UpsertStatus,
)

__all__ = [
    "AppointmentDraft",
    "AppointmentRecord",
    "AppointmentStore",
    "BusyInterval",
    "BusySource",
    "ConstraintKind",
    "DeleteOutcome",
    "EventCounter",
    "EventPayload",
    "EventSink",
    "InventorySource",
    "ResourceInfo",
    "UpsertResult",
    "UpsertStatus",
]
