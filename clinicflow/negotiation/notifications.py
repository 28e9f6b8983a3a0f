from typing import Any

from clinicflow.domain.models import Actor, AppointmentRecord, AppointmentStatus, Slot
from clinicflow.negotiation.adapters.datetime_helpers import describe_slot

NOTIFICATION_TITLES: dict[AppointmentStatus, str] = {
    AppointmentStatus.PENDING: "New Appointment Request",
    AppointmentStatus.COUNTER_OFFERED: "Alternative Time Suggested",
    AppointmentStatus.CONFIRMED: "Appointment Confirmed",
    AppointmentStatus.REJECTED: "Appointment Request Declined",
    AppointmentStatus.CANCELLED: "Appointment Cancelled",
    AppointmentStatus.RESCHEDULED: "Appointment Rescheduled",
    AppointmentStatus.IN_PROGRESS: "Appointment Started",
    AppointmentStatus.COMPLETED: "Appointment Completed",
    AppointmentStatus.NO_SHOW: "Missed Appointment",
}

DEFAULT_TITLE: str = "Appointment Updated"


def recipient_of(actor: Actor) -> Actor:
    """The party to notify when ``actor`` changes an appointment."""
    return Actor.CLINIC if actor == Actor.PATIENT else Actor.PATIENT


def _slot_payload(slot: Slot) -> dict[str, Any]:
    return {
        "date": slot.date.isoformat(),
        "time": slot.time.strftime("%H:%M"),
        "duration": slot.duration,
    }


def _body(record: AppointmentRecord, actor: Actor) -> str:
    status = record.status
    visit = record.original_request.visit_type.value

    if status == AppointmentStatus.PENDING:
        return f"New {visit} request for {describe_slot(record.original_request.slot)}"
    if status == AppointmentStatus.COUNTER_OFFERED:
        return f"The clinic suggested {describe_slot(record.negotiated_terms())} instead"
    if status == AppointmentStatus.CONFIRMED and record.confirmed_details:
        return f"Your {visit} is confirmed for {describe_slot(record.confirmed_details.slot)}"
    if status == AppointmentStatus.REJECTED:
        if actor == Actor.CLINIC:
            return "The clinic could not accommodate your request"
        return "The patient declined the suggested time"
    if status == AppointmentStatus.CANCELLED:
        return f"Your {visit} appointment was cancelled by the {actor.value}"
    if status == AppointmentStatus.RESCHEDULED:
        proposal = record.latest_reschedule
        if proposal and proposal.proposed_date:
            slot = describe_slot(record.negotiated_terms())
            return f"The {actor.value} asked to move the {visit} to {slot}"
        return f"The {actor.value} asked to reschedule the {visit}"
    return f"Appointment status changed to {status.value}"


def build_notification_context(
    record: AppointmentRecord, actor: Actor, message: str | None = None
) -> dict[str, Any]:
    """Build the payload handed to the notification gateway for ``record``'s current status."""
    context: dict[str, Any] = {
        "title": NOTIFICATION_TITLES.get(record.status, DEFAULT_TITLE),
        "body": _body(record, actor),
        "status": record.status.value,
        "updated_by": actor.value,
        "visit_type": record.original_request.visit_type.value,
    }

    if record.status in (AppointmentStatus.COUNTER_OFFERED, AppointmentStatus.RESCHEDULED):
        context["proposed"] = _slot_payload(record.negotiated_terms())
    elif record.status == AppointmentStatus.PENDING:
        context["requested"] = _slot_payload(record.original_request.slot)
    elif record.status == AppointmentStatus.CONFIRMED and record.confirmed_details:
        context["confirmed"] = _slot_payload(record.confirmed_details.slot)

    if message:
        context["message"] = message
    return context
