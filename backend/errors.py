"""
Domain Errors

Exceptions raised by the alert lifecycle, reconciliation and repositories.
"""

from uuid import UUID


class DomainError(Exception):
    """Base class for LicenseGuard domain errors."""


class InvalidTransition(DomainError):
    """An alert lifecycle transition is not allowed from the current status."""

    def __init__(self, action: str, current_status: str):
        self.action = action
        self.current_status = current_status
        super().__init__(f"Cannot {action} an alert with status '{current_status}'")


class InvalidSnoozeDate(DomainError):
    """Snooze target is not strictly in the future."""


class InvalidAlertKeyInput(DomainError):
    """Fields required to compute an alert key are missing."""

    def __init__(self, alert_type: str, missing: list[str]):
        self.alert_type = alert_type
        self.missing = missing
        super().__init__(
            f"Alert type '{alert_type}' requires {', '.join(missing)} to build its key"
        )


class AlertNotFound(DomainError):
    def __init__(self, alert_id: UUID):
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} not found")


class IntegrationNotFound(DomainError):
    def __init__(self, integration_id: UUID):
        self.integration_id = integration_id
        super().__init__(f"Integration {integration_id} not found")


class PersistenceError(DomainError):
    """A repository could not read or write a record."""
