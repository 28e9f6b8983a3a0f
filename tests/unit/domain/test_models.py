import datetime as dt

import pydantic
import pytest

from clinicflow.domain.exceptions import InvalidTransitionError
from clinicflow.domain.models import (
    Actor,
    AppointmentRecord,
    AppointmentStatus,
    ClinicResponseEntry,
    ClinicResponseType,
    ConfirmedDetails,
    Message,
    OriginalRequest,
    Slot,
    StatusChange,
    VisitType,
)

T0 = dt.datetime(2025, 8, 1, 9, 0, tzinfo=dt.timezone.utc)


def _record(**overrides: object) -> AppointmentRecord:
    fields: dict[str, object] = {
        "appointment_id": "a1",
        "patient_id": "P1",
        "clinic_id": "C1",
        "original_request": OriginalRequest(
            requested_date=dt.date(2025, 9, 1),
            requested_time=dt.time(10, 0),
            duration=30,
            visit_type=VisitType.CLEANING,
            reason="routine",
            requested_at=T0,
        ),
        "created_at": T0,
        "last_activity_at": T0,
        "updated_at": T0,
    }
    fields.update(overrides)
    return AppointmentRecord(**fields)  # type: ignore[arg-type]


def _details(**overrides: object) -> ConfirmedDetails:
    fields: dict[str, object] = {
        "final_date": dt.date(2025, 9, 1),
        "final_time": dt.time(10, 0),
        "final_duration": 30,
        "confirmed_at": T0,
        "confirmed_by": Actor.CLINIC,
    }
    fields.update(overrides)
    return ConfirmedDetails(**fields)  # type: ignore[arg-type]


class TestInvariants:
    def test_new_record_defaults(self) -> None:
        record = _record()

        assert record.status == AppointmentStatus.PENDING
        assert record.clinic_responses == ()
        assert record.patient_responses == ()
        assert record.confirmed_details is None
        assert record.version == 1

    def test_activity_cannot_precede_creation(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="last_activity_at"):
            _record(last_activity_at=T0 - dt.timedelta(seconds=1))

    def test_confirmed_requires_details(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="confirmed_details"):
            _record(status=AppointmentStatus.CONFIRMED)

    def test_evolve_revalidates(self) -> None:
        record = _record()

        with pytest.raises(pydantic.ValidationError):
            record.evolve(status=AppointmentStatus.COMPLETED)

    def test_evolve_leaves_original_untouched(self) -> None:
        record = _record()
        later = T0 + dt.timedelta(minutes=1)

        updated = record.evolve(status=AppointmentStatus.REJECTED, last_activity_at=later)

        assert updated.status == AppointmentStatus.REJECTED
        assert record.status == AppointmentStatus.PENDING
        assert record.last_activity_at == T0

    def test_records_are_frozen(self) -> None:
        record = _record()

        with pytest.raises(pydantic.ValidationError):
            record.status = AppointmentStatus.CANCELLED  # type: ignore[misc]

    def test_status_serializes_hyphenated(self) -> None:
        record = _record(status=AppointmentStatus.COUNTER_OFFERED)

        assert record.model_dump(mode="json")["status"] == "counter-offered"


class TestNegotiatedTerms:
    def test_defaults_to_original_request(self) -> None:
        assert _record().negotiated_terms() == Slot(
            date=dt.date(2025, 9, 1), time=dt.time(10, 0), duration=30
        )

    def test_uses_latest_counter_offer(self) -> None:
        offers = (
            ClinicResponseEntry(
                response_type=ClinicResponseType.COUNTER_OFFER,
                proposed_date=dt.date(2025, 9, 2),
                proposed_time=dt.time(14, 0),
                proposed_duration=45,
                responded_at=T0,
                responded_by="C1",
            ),
            ClinicResponseEntry(
                response_type=ClinicResponseType.COUNTER_OFFER,
                proposed_date=dt.date(2025, 9, 3),
                proposed_time=dt.time(8, 30),
                responded_at=T0,
                responded_by="C1",
            ),
        )

        record = _record(status=AppointmentStatus.COUNTER_OFFERED, clinic_responses=offers)

        assert record.negotiated_terms() == Slot(
            date=dt.date(2025, 9, 3), time=dt.time(8, 30), duration=30
        )

    def test_reschedule_proposal_overrides_confirmed_slot(self) -> None:
        record = _record(
            status=AppointmentStatus.RESCHEDULED,
            confirmed_details=_details(final_duration=60),
            status_history=(
                StatusChange(
                    from_status=AppointmentStatus.CONFIRMED,
                    to_status=AppointmentStatus.RESCHEDULED,
                    updated_by=Actor.PATIENT,
                    proposed_date=dt.date(2025, 9, 10),
                    proposed_time=dt.time(16, 0),
                    changed_at=T0,
                ),
            ),
        )

        assert record.negotiated_terms() == Slot(
            date=dt.date(2025, 9, 10), time=dt.time(16, 0), duration=60
        )

    def test_reschedule_without_proposal_keeps_confirmed_slot(self) -> None:
        record = _record(
            status=AppointmentStatus.RESCHEDULED,
            confirmed_details=_details(final_time=dt.time(11, 15)),
        )

        assert record.negotiated_terms().time == dt.time(11, 15)

    def test_scheduled_slot_prefers_confirmed_details(self) -> None:
        pending = _record()
        confirmed = _record(
            status=AppointmentStatus.CONFIRMED,
            confirmed_details=_details(final_date=dt.date(2025, 9, 4), final_time=dt.time(12, 0)),
        )

        assert pending.scheduled_slot == pending.negotiated_terms()
        assert confirmed.scheduled_slot == Slot(
            date=dt.date(2025, 9, 4), time=dt.time(12, 0), duration=30
        )


class TestParties:
    def test_party_id(self) -> None:
        record = _record()

        assert record.party_id(Actor.PATIENT) == "P1"
        assert record.party_id(Actor.CLINIC) == "C1"

    def test_system_is_not_a_party(self) -> None:
        with pytest.raises(ValueError, match="not a party"):
            _record().party_id(Actor.SYSTEM)

    def test_unread_messages_only_from_other_party(self) -> None:
        messages = (
            Message(sender=Actor.PATIENT, sender_id="P1", body="hi", sent_at=T0),
            Message(sender=Actor.CLINIC, sender_id="C1", body="hello", sent_at=T0),
            Message(sender=Actor.CLINIC, sender_id="C1", body="seen", sent_at=T0, read_at=T0),
        )
        record = _record(messages=messages)

        unread = record.unread_messages_for(Actor.PATIENT)

        assert [m.body for m in unread] == ["hello"]


class TestInvalidTransitionMessage:
    def test_names_the_attempted_move(self) -> None:
        exc = InvalidTransitionError(
            AppointmentStatus.CONFIRMED, AppointmentStatus.COUNTER_OFFERED, Actor.CLINIC
        )

        assert str(exc) == "clinic cannot move appointment from confirmed to counter-offered"
        assert exc.from_status == AppointmentStatus.CONFIRMED
        assert exc.actor == Actor.CLINIC

    def test_response_without_target(self) -> None:
        exc = InvalidTransitionError(AppointmentStatus.PENDING, None, Actor.PATIENT)

        assert str(exc) == "patient cannot respond to an appointment that is pending"
