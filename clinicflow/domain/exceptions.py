from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clinicflow.domain.models import Actor, AppointmentStatus


class NegotiationError(Exception):
    """Base exception for all appointment negotiation errors."""


class ValidationError(NegotiationError):
    """Raised when an operation receives malformed or incomplete input."""

    def __init__(self, reason: str, field: str | None = None) -> None:
        self.reason = reason
        self.field = field
        super().__init__(reason)


class NotFoundError(NegotiationError):
    """Raised when the referenced appointment does not exist."""

    def __init__(self, appointment_id: str) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment not found: {appointment_id}")


class InvalidTransitionError(NegotiationError):
    """Raised when no transition rule allows the actor's requested move."""

    def __init__(
        self,
        from_status: AppointmentStatus,
        to_status: AppointmentStatus | None,
        actor: Actor,
        reason: str | None = None,
    ) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.actor = actor
        if reason is None:
            if to_status is None:
                reason = (
                    f"{actor.value} cannot respond to an appointment "
                    f"that is {from_status.value}"
                )
            else:
                reason = (
                    f"{actor.value} cannot move appointment from "
                    f"{from_status.value} to {to_status.value}"
                )
        self.reason = reason
        super().__init__(reason)


class ConflictError(NegotiationError):
    """Raised when an appointment was modified concurrently."""

    def __init__(
        self,
        appointment_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        self.appointment_id = appointment_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Appointment {appointment_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class NotificationDeliveryError(NegotiationError):
    """Raised by a notification gateway when delivery fails."""

    def __init__(self, reason: str, recipient_id: str | None = None) -> None:
        self.reason = reason
        self.recipient_id = recipient_id
        super().__init__(f"Failed to deliver notification: {reason}")
