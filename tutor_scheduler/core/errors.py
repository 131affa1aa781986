"""Error taxonomy shared by the resolver, the booking transactor and the routes."""


class SchedulingError(Exception):
    """Base class for every error the scheduling engine raises."""

    code = 'scheduling_error'

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_detail(self) -> dict:
        detail = {'error': self.code, 'message': self.message}
        if self.field:
            detail['field'] = self.field
        return detail


class InvalidRequestError(SchedulingError):
    """Malformed input: bad range, bad requester fields, bad duration."""

    code = 'invalid_request'


class PolicyValidationError(InvalidRequestError):
    """A template or exception row violates the policy store invariants."""

    code = 'invalid_policy'


class PolicyConflictError(SchedulingError):
    """An exception already covers the requested date/time."""

    code = 'policy_conflict'


class PolicyNotFoundError(SchedulingError):
    code = 'not_found'


class PastSlotError(SchedulingError):
    code = 'past_slot'


class BusyIntervalSourceUnavailable(SchedulingError):
    """The external calendar could not be queried (network, auth or timeout)."""

    code = 'busy_source_unavailable'


class SlotConflictError(SchedulingError):
    code = 'slot_conflict'


class CalendarServiceError(SchedulingError):
    """Event creation failed after a successful recheck."""

    code = 'calendar_service_error'


class NotificationDispatchError(SchedulingError):
    # Logged by the transactor, never propagated to callers.
    code = 'notification_dispatch_error'
