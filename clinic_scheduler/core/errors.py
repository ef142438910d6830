"""Error taxonomy shared by the scheduling services.

Routers translate these into ``HTTPException`` responses; the services never
build HTTP responses themselves.
"""

PRACTITIONER_CONFLICT = 'practitioner_conflict'
ROOM_CONFLICT = 'room_conflict'
EQUIPMENT_CONFLICT = 'equipment_conflict'


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""


class SchedulingValidationError(SchedulingError):
    """Malformed or missing input, or an illegal state transition. Never retried."""


class RecordNotFound(SchedulingError):
    def __init__(self, record: str, record_id) -> None:
        super().__init__(f'{record} {record_id} not found.')
        self.record = record
        self.record_id = record_id


class BookingConflict(SchedulingError):
    """A practitioner or resource is already held by a non-terminal reservation."""

    def __init__(
        self,
        kind: str,
        message: str,
        practitioner_id: int | None = None,
        resource_id: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.practitioner_id = practitioner_id
        self.resource_id = resource_id

    def to_detail(self) -> dict:
        detail = {'error': self.kind, 'message': self.message}
        if self.practitioner_id is not None:
            detail['practitioner_id'] = self.practitioner_id
        if self.resource_id is not None:
            detail['resource_id'] = self.resource_id
        return detail


class StoreUnavailable(SchedulingError):
    """The underlying store failed a read or write."""


class OperationCancelled(SchedulingError):
    """The request-scoped cancellation signal fired before the operation finished."""
