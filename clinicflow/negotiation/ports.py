import datetime as dt
from abc import ABC, abstractmethod
from typing import Any, Protocol

from clinicflow.domain.models import (
    Actor,
    AppointmentRecord,
    AppointmentRequest,
    AppointmentStatus,
    ClinicResponse,
    ClinicStatistics,
    PatientResponse,
)


class AbstractNegotiationEngine(ABC):
    """Caller-facing surface of the appointment negotiation protocol."""

    @abstractmethod
    async def request_appointment(
        self, patient_id: str, clinic_id: str, request: AppointmentRequest
    ) -> AppointmentRecord:
        """Open a new negotiation with status ``pending``.

        Args:
            patient_id: The requesting patient's ID.
            clinic_id: The clinic the request is addressed to.
            request: The requested date, time, duration and visit type.

        Returns:
            The newly persisted appointment record.

        Raises:
            ValidationError: If an ID is missing or the duration is not positive.
                Also raised when the patient already has an active appointment
                within 15 minutes of the requested time.
        """

    @abstractmethod
    async def apply_clinic_response(
        self,
        appointment_id: str,
        response: ClinicResponse,
        clinic_id: str | None = None,
    ) -> AppointmentRecord:
        """Confirm, counter-offer or reject an appointment on behalf of the clinic.

        Raises:
            NotFoundError: If the appointment does not exist.
            InvalidTransitionError: If the clinic may not respond in the current status.
            ValidationError: If a counter-offer lacks a proposed date or time.
            ConflictError: If the appointment kept changing underneath the call.
        """

    @abstractmethod
    async def apply_patient_response(
        self, appointment_id: str, response: PatientResponse
    ) -> AppointmentRecord:
        """Accept, reject or counter a clinic counter-offer.

        Raises:
            NotFoundError: If the appointment does not exist.
            InvalidTransitionError: If the appointment is not awaiting a patient reply.
            ConflictError: If the appointment kept changing underneath the call.
        """

    @abstractmethod
    async def cancel(
        self, appointment_id: str, actor: Actor, reason: str | None = None
    ) -> AppointmentRecord:
        """Cancel an appointment.

        Cancelling a confirmed appointment is flagged ``requires_confirmation``
        in the transition table; the caller must obtain it before calling.

        Raises:
            NotFoundError: If the appointment does not exist.
            InvalidTransitionError: If ``actor`` may not cancel in the current status.
            ConflictError: If the appointment kept changing underneath the call.
        """

    @abstractmethod
    async def transition_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        actor: Actor,
        notes: str | None = None,
        *,
        proposed_date: dt.date | None = None,
        proposed_time: dt.time | None = None,
        proposed_duration: int | None = None,
    ) -> AppointmentRecord:
        """Move an appointment to ``new_status`` outside the request/response flow.

        Used for ``in-progress``, ``completed``, ``no-show``, ``rescheduled`` and
        re-confirming a rescheduled visit.  Moves owned by another operation
        (clinic and patient responses, cancellation) are refused.
        Proposed date, time and duration are only accepted for ``rescheduled``.

        Raises:
            NotFoundError: If the appointment does not exist.
            InvalidTransitionError: If no rule allows the move for ``actor``
                or the move belongs to another operation.
            ValidationError: If a reschedule proposal is incomplete or misplaced.
            ConflictError: If the appointment kept changing underneath the call.
        """

    @abstractmethod
    async def get_valid_actions(
        self, appointment_id: str, actor: Actor
    ) -> frozenset[AppointmentStatus]:
        """Statuses ``actor`` may move the appointment to right now."""

    @abstractmethod
    async def get_appointment(self, appointment_id: str) -> AppointmentRecord:
        """Fetch a single appointment.

        Raises:
            NotFoundError: If the appointment does not exist.
        """

    @abstractmethod
    async def list_for_patient(self, patient_id: str) -> list[AppointmentRecord]:
        """A patient's appointments, most recently active first."""

    @abstractmethod
    async def list_for_clinic(
        self, clinic_id: str, status: AppointmentStatus | None = None
    ) -> list[AppointmentRecord]:
        """A clinic's appointments, most recently active first, optionally filtered by status."""

    @abstractmethod
    async def upcoming_for_patient(
        self, patient_id: str, limit: int = 5
    ) -> list[AppointmentRecord]:
        """A patient's confirmed visits that have not started yet, soonest first.

        Raises:
            ValidationError: If ``limit`` is not positive.
        """

    @abstractmethod
    async def clinic_statistics(
        self,
        clinic_id: str,
        start_date: dt.date | None = None,
        end_date: dt.date | None = None,
    ) -> ClinicStatistics:
        """Count a clinic's appointments per status, optionally within a date range.

        Appointments are placed by their scheduled date; both bounds are inclusive.

        Raises:
            ValidationError: If ``start_date`` is after ``end_date``.
        """

    @abstractmethod
    async def add_message(
        self, appointment_id: str, sender: Actor, sender_id: str, body: str
    ) -> AppointmentRecord:
        """Append a free-form message to the appointment's conversation.

        Raises:
            NotFoundError: If the appointment does not exist.
            ValidationError: If the sender is not a party or the body is blank.
        """

    @abstractmethod
    async def mark_messages_read(self, appointment_id: str, reader: Actor) -> AppointmentRecord:
        """Mark every message from the other party as read by ``reader``."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by this engine and its notifier."""


class AppointmentRepository(Protocol):
    """Persistence seam for appointment records."""

    async def find_by_id(self, appointment_id: str) -> AppointmentRecord | None:
        """Return the record, or None if it does not exist."""
        ...

    async def find_by_patient(self, patient_id: str) -> list[AppointmentRecord]:
        """Return all records for a patient."""
        ...

    async def find_by_clinic(self, clinic_id: str) -> list[AppointmentRecord]:
        """Return all records for a clinic."""
        ...

    async def save(self, record: AppointmentRecord, expected_version: int | None = None) -> None:
        """Upsert a record.

        When ``expected_version`` is given, the stored version must match it
        (``0`` meaning the record must not exist yet), otherwise
        ``ConflictError`` is raised.
        """
        ...


class NotificationGateway(Protocol):
    """Delivery seam for status-change notifications."""

    async def notify(
        self,
        recipient_actor: Actor,
        recipient_id: str,
        appointment_id: str,
        new_status: AppointmentStatus,
        context: dict[str, Any],
    ) -> None:
        """Notify a party that an appointment changed."""
        ...

    async def close(self) -> None:
        """Release any connection held by the gateway."""
        ...
