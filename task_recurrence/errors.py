"""Exception hierarchy for the recurrence engine."""

from __future__ import annotations


class RecurrenceError(Exception):
    """Base class for all errors raised by :mod:`task_recurrence`."""


class InvalidCronExpression(RecurrenceError, ValueError):
    """Raised when a cron string cannot be parsed or never fires."""

    def __init__(self, expression: str, reason: str | None = None) -> None:
        self.expression = expression
        self.reason = reason
        message = f"Invalid cron expression {expression!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidTimezone(RecurrenceError, ValueError):
    """Raised when a timezone identifier is not a known IANA zone."""

    def __init__(self, timezone: str) -> None:
        self.timezone = timezone
        super().__init__(f"Unknown timezone: {timezone!r}")


class PersistenceFailure(RecurrenceError):
    """Raised when a store cannot read or write its backing file."""


class NotificationFailure(RecurrenceError):
    """Raised by notifiers when a message could not be delivered."""


class TemplateNotFound(RecurrenceError, KeyError):
    """Raised when a template id does not exist in the store."""

    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(template_id)

    def __str__(self) -> str:
        return f"Unknown template: {self.template_id}"
