import datetime as dt
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, model_validator


class AppointmentStatus(str, Enum):
    """Possible states of an appointment negotiation."""

    PENDING = "pending"
    COUNTER_OFFERED = "counter-offered"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    IN_PROGRESS = "in-progress"
    NO_SHOW = "no-show"
    RESCHEDULED = "rescheduled"


TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset(
    {
        AppointmentStatus.REJECTED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }
)

# Statuses that can only be reached through a confirmation.
_CONFIRMED_LINEAGE: frozenset[AppointmentStatus] = frozenset(
    {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    }
)


class Actor(str, Enum):
    """The party performing an operation."""

    PATIENT = "patient"
    CLINIC = "clinic"
    SYSTEM = "system"


class VisitType(str, Enum):
    CONSULTATION = "consultation"
    CLEANING = "cleaning"
    PROCEDURE = "procedure"
    EMERGENCY = "emergency"
    FOLLOW_UP = "follow-up"


class ClinicResponseType(str, Enum):
    COUNTER_OFFER = "counter-offer"
    CONFIRMATION = "confirmation"
    REJECTION = "rejection"


class PatientResponseType(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


# --- Caller payloads -------------------------------------------------------


class AppointmentRequest(BaseModel):
    """A patient's request for a visit, as submitted by the caller."""

    model_config = ConfigDict(frozen=True)

    requested_date: dt.date
    requested_time: dt.time
    duration: int = 30
    visit_type: VisitType
    reason: str = ""


class ClinicResponse(BaseModel):
    """The clinic's answer to a pending or rescheduled appointment."""

    model_config = ConfigDict(frozen=True)

    response_type: ClinicResponseType
    proposed_date: dt.date | None = None
    proposed_time: dt.time | None = None
    proposed_duration: int | None = None
    message: str = ""


class PatientResponse(BaseModel):
    """The patient's answer to a clinic counter-offer."""

    model_config = ConfigDict(frozen=True)

    response_type: PatientResponseType
    message: str | None = None


# --- Record parts ----------------------------------------------------------


class Slot(BaseModel):
    """A concrete date, time and duration under negotiation."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    time: dt.time
    duration: int


class OriginalRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    requested_date: dt.date
    requested_time: dt.time
    duration: int
    visit_type: VisitType
    reason: str = ""
    requested_at: dt.datetime

    @property
    def slot(self) -> Slot:
        return Slot(date=self.requested_date, time=self.requested_time, duration=self.duration)


class ClinicResponseEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    response_type: ClinicResponseType
    proposed_date: dt.date | None = None
    proposed_time: dt.time | None = None
    proposed_duration: int | None = None
    message: str = ""
    responded_at: dt.datetime
    responded_by: str


class PatientResponseEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    response_type: PatientResponseType
    message: str | None = None
    responded_at: dt.datetime


class ConfirmedDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    final_date: dt.date
    final_time: dt.time
    final_duration: int
    confirmed_at: dt.datetime
    confirmed_by: Actor

    @property
    def slot(self) -> Slot:
        return Slot(date=self.final_date, time=self.final_time, duration=self.final_duration)


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: Actor
    sender_id: str
    body: str
    sent_at: dt.datetime
    read_at: dt.datetime | None = None


class StatusChange(BaseModel):
    """One entry of the status audit trail."""

    model_config = ConfigDict(frozen=True)

    from_status: AppointmentStatus
    to_status: AppointmentStatus
    updated_by: Actor
    notes: str | None = None
    proposed_date: dt.date | None = None
    proposed_time: dt.time | None = None
    proposed_duration: int | None = None
    changed_at: dt.datetime


class AppointmentRecord(BaseModel):
    """One negotiation thread between a patient and a clinic for one visit.

    Records are immutable; every mutation goes through :meth:`evolve`, which
    builds and re-validates a new instance.  Histories are tuples so they can
    only be extended by building a new record.
    """

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    patient_id: str
    clinic_id: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    original_request: OriginalRequest
    clinic_responses: tuple[ClinicResponseEntry, ...] = ()
    patient_responses: tuple[PatientResponseEntry, ...] = ()
    confirmed_details: ConfirmedDetails | None = None
    messages: tuple[Message, ...] = ()
    status_history: tuple[StatusChange, ...] = ()
    created_at: dt.datetime
    last_activity_at: dt.datetime
    updated_at: dt.datetime
    version: int = 1

    @model_validator(mode="after")
    def _check_invariants(self) -> Self:
        if self.last_activity_at < self.created_at:
            raise ValueError("last_activity_at must not precede created_at")
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not precede created_at")
        if self.status in _CONFIRMED_LINEAGE and self.confirmed_details is None:
            raise ValueError(f"confirmed_details is required once status is {self.status.value}")
        if self.version < 1:
            raise ValueError("version starts at 1")
        return self

    def evolve(self, **changes: Any) -> Self:
        """Return a validated copy with ``changes`` applied."""
        return type(self)(**{**dict(self), **changes})

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def latest_clinic_response(self) -> ClinicResponseEntry | None:
        return self.clinic_responses[-1] if self.clinic_responses else None

    @property
    def latest_counter_offer(self) -> ClinicResponseEntry | None:
        for entry in reversed(self.clinic_responses):
            if entry.response_type == ClinicResponseType.COUNTER_OFFER:
                return entry
        return None

    @property
    def latest_reschedule(self) -> StatusChange | None:
        for change in reversed(self.status_history):
            if change.to_status == AppointmentStatus.RESCHEDULED:
                return change
        return None

    def negotiated_terms(self) -> Slot:
        """The slot the parties are currently negotiating.

        While rescheduled, this is the reschedule proposal layered over the
        last confirmed slot.  Otherwise it is the clinic's latest counter-offer
        layered over the original request.  Missing proposed fields fall back
        to the underlying slot.
        """
        if self.status == AppointmentStatus.RESCHEDULED:
            base = (
                self.confirmed_details.slot
                if self.confirmed_details
                else self.original_request.slot
            )
            proposal = self.latest_reschedule
            if proposal is None:
                return base
            return Slot(
                date=proposal.proposed_date or base.date,
                time=proposal.proposed_time or base.time,
                duration=proposal.proposed_duration or base.duration,
            )

        base = self.original_request.slot
        offer = self.latest_counter_offer
        if offer is None:
            return base
        return Slot(
            date=offer.proposed_date or base.date,
            time=offer.proposed_time or base.time,
            duration=offer.proposed_duration or base.duration,
        )

    @property
    def scheduled_slot(self) -> Slot:
        """The confirmed slot once there is one, otherwise the slot under negotiation."""
        if self.confirmed_details:
            return self.confirmed_details.slot
        return self.negotiated_terms()

    def party_id(self, actor: Actor) -> str:
        """Return the id of the patient or clinic taking part in this thread."""
        if actor == Actor.PATIENT:
            return self.patient_id
        if actor == Actor.CLINIC:
            return self.clinic_id
        raise ValueError(f"{actor.value} is not a party to the appointment")

    def unread_messages_for(self, reader: Actor) -> list[Message]:
        """Messages sent by the other party that ``reader`` has not read yet."""
        return [m for m in self.messages if m.sender != reader and m.read_at is None]


class ClinicStatistics(BaseModel):
    """Appointment counts for one clinic over an optional date range."""

    model_config = ConfigDict(frozen=True)

    clinic_id: str
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    total: int
    by_status: dict[AppointmentStatus, int]
