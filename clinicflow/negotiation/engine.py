import datetime as dt
import uuid
from collections.abc import Callable
from typing import Any, NamedTuple

from loguru import logger

from clinicflow.domain.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    NotificationDeliveryError,
    ValidationError,
)
from clinicflow.domain.models import (
    Actor,
    AppointmentRecord,
    AppointmentRequest,
    AppointmentStatus,
    ClinicResponse,
    ClinicResponseEntry,
    ClinicResponseType,
    ClinicStatistics,
    ConfirmedDetails,
    Message,
    OriginalRequest,
    PatientResponse,
    PatientResponseEntry,
    PatientResponseType,
    StatusChange,
)
from clinicflow.domain.transitions import TransitionRule, rule_for, valid_transitions
from clinicflow.negotiation.adapters.datetime_helpers import resolve_timezone, utc_now
from clinicflow.negotiation.locks import AppointmentLocks
from clinicflow.negotiation.notifications import build_notification_context, recipient_of
from clinicflow.negotiation.ports import (
    AbstractNegotiationEngine,
    AppointmentRepository,
    NotificationGateway,
)

_CLINIC_RESPONSE_TARGETS: dict[ClinicResponseType, AppointmentStatus] = {
    ClinicResponseType.CONFIRMATION: AppointmentStatus.CONFIRMED,
    ClinicResponseType.COUNTER_OFFER: AppointmentStatus.COUNTER_OFFERED,
    ClinicResponseType.REJECTION: AppointmentStatus.REJECTED,
}

# ``counter`` has no status of its own: it is recorded in history only.
_PATIENT_RESPONSE_TARGETS: dict[PatientResponseType, AppointmentStatus | None] = {
    PatientResponseType.ACCEPT: AppointmentStatus.CONFIRMED,
    PatientResponseType.REJECT: AppointmentStatus.REJECTED,
    PatientResponseType.COUNTER: None,
}

_PARTIES: frozenset[Actor] = frozenset({Actor.PATIENT, Actor.CLINIC})

# Moves that carry response bookkeeping; transition_status refuses them.
_RESPONSE_MOVES: dict[tuple[AppointmentStatus, AppointmentStatus], str] = {
    (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED): "apply_clinic_response",
    (AppointmentStatus.PENDING, AppointmentStatus.COUNTER_OFFERED): "apply_clinic_response",
    (AppointmentStatus.PENDING, AppointmentStatus.REJECTED): "apply_clinic_response",
    (AppointmentStatus.COUNTER_OFFERED, AppointmentStatus.CONFIRMED): "apply_patient_response",
    (AppointmentStatus.COUNTER_OFFERED, AppointmentStatus.REJECTED): "apply_patient_response",
}

# A patient cannot hold two active appointments starting this close together.
DUPLICATE_WINDOW = dt.timedelta(minutes=15)


class _Change(NamedTuple):
    """Field updates produced by an operation, plus its notification decision."""

    fields: dict[str, Any]
    actor: Actor
    notify: bool = False
    message: str | None = None


Operation = Callable[[AppointmentRecord, dt.datetime], _Change | None]


def _require_positive(value: int | None, field: str) -> None:
    if value is not None and value <= 0:
        raise ValidationError(f"'{field}' must be a positive number of minutes.", field=field)


def _require_id(value: str, field: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"'{field}' is required.", field=field)


def _starts_at(record: AppointmentRecord) -> dt.datetime:
    slot = record.scheduled_slot
    return dt.datetime.combine(slot.date, slot.time)


class NegotiationEngine(AbstractNegotiationEngine):
    """The single authority for changing an appointment's negotiation state.

    Every mutating operation runs as: take the per-appointment lock, load the
    record, validate against the transition table, build the new record, save
    it with an optimistic version check, release the lock and finally, if the
    matched rule asks for it, notify the other party.  Notification failures
    are logged and never undo the saved change.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        notifier: NotificationGateway,
        *,
        clock: Callable[[], dt.datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        conflict_retries: int = 2,
        reject_past_requests: bool = False,
        clinic_timezone: str = "UTC",
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._clock = clock or utc_now
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._conflict_retries = conflict_retries
        self._reject_past_requests = reject_past_requests
        self._clinic_tz = resolve_timezone(clinic_timezone)
        self._locks = AppointmentLocks()

    # --- Creation -----------------------------------------------------------

    async def request_appointment(
        self, patient_id: str, clinic_id: str, request: AppointmentRequest
    ) -> AppointmentRecord:
        _require_id(patient_id, "patient_id")
        _require_id(clinic_id, "clinic_id")
        if request.duration <= 0:
            raise ValidationError(
                "'duration' must be a positive number of minutes.", field="duration"
            )

        now = self._clock()
        if self._reject_past_requests:
            requested_at = dt.datetime.combine(
                request.requested_date, request.requested_time, tzinfo=self._clinic_tz
            )
            if requested_at < now.astimezone(self._clinic_tz):
                raise ValidationError(
                    "Requested time is in the past. Please choose a future date and time.",
                    field="requested_date",
                )

        async with self._locks.hold(f"patient:{patient_id}"):
            await self._reject_duplicate(patient_id, request)
            record = AppointmentRecord(
                appointment_id=self._id_factory(),
                patient_id=patient_id,
                clinic_id=clinic_id,
                status=AppointmentStatus.PENDING,
                original_request=OriginalRequest(**request.model_dump(), requested_at=now),
                created_at=now,
                last_activity_at=now,
                updated_at=now,
            )
            await self._repository.save(record, expected_version=0)

        logger.info(
            "Appointment {} requested: clinic={}, date={}, time={}, duration={}",
            record.appointment_id,
            clinic_id,
            request.requested_date,
            request.requested_time,
            request.duration,
        )
        await self._dispatch(record, Actor.PATIENT)
        return record

    # --- Negotiation --------------------------------------------------------

    async def apply_clinic_response(
        self,
        appointment_id: str,
        response: ClinicResponse,
        clinic_id: str | None = None,
    ) -> AppointmentRecord:
        target = _CLINIC_RESPONSE_TARGETS[response.response_type]

        def apply(current: AppointmentRecord, now: dt.datetime) -> _Change:
            if clinic_id is not None and clinic_id != current.clinic_id:
                raise ValidationError(
                    f"Clinic {clinic_id} is not a party to this appointment.", field="clinic_id"
                )
            rule = self._require_rule(current, target, Actor.CLINIC)
            entry = self._clinic_entry(response, current.clinic_id, now)

            fields: dict[str, Any] = {"clinic_responses": (*current.clinic_responses, entry)}
            if target == AppointmentStatus.CONFIRMED:
                fields["confirmed_details"] = self._confirmation(current, Actor.CLINIC, now)
            fields.update(
                self._status_fields(
                    current, target, Actor.CLINIC, now, notes=response.message or None
                )
            )
            return _Change(
                fields, Actor.CLINIC, rule.requires_notification, response.message or None
            )

        record = await self._mutate(appointment_id, apply)
        logger.info(
            "Clinic responded to appointment {} with {}: status={}",
            appointment_id,
            response.response_type.value,
            record.status.value,
        )
        return record

    async def apply_patient_response(
        self, appointment_id: str, response: PatientResponse
    ) -> AppointmentRecord:
        target = _PATIENT_RESPONSE_TARGETS[response.response_type]

        def apply(current: AppointmentRecord, now: dt.datetime) -> _Change:
            entry = PatientResponseEntry(
                response_type=response.response_type,
                message=response.message,
                responded_at=now,
            )
            fields: dict[str, Any] = {"patient_responses": (*current.patient_responses, entry)}

            if target is None:
                if current.status != AppointmentStatus.COUNTER_OFFERED:
                    raise InvalidTransitionError(current.status, None, Actor.PATIENT)
                return _Change(fields, Actor.PATIENT)

            rule = self._require_rule(current, target, Actor.PATIENT)
            if target == AppointmentStatus.CONFIRMED:
                fields["confirmed_details"] = self._confirmation(current, Actor.PATIENT, now)
            fields.update(
                self._status_fields(current, target, Actor.PATIENT, now, notes=response.message)
            )
            return _Change(fields, Actor.PATIENT, rule.requires_notification, response.message)

        record = await self._mutate(appointment_id, apply)
        logger.info(
            "Patient responded to appointment {} with {}: status={}",
            appointment_id,
            response.response_type.value,
            record.status.value,
        )
        return record

    async def cancel(
        self, appointment_id: str, actor: Actor, reason: str | None = None
    ) -> AppointmentRecord:
        def apply(current: AppointmentRecord, now: dt.datetime) -> _Change:
            rule = self._require_rule(current, AppointmentStatus.CANCELLED, actor)
            body = f"Cancelled by {actor.value}"
            if reason:
                body = f"{body}: {reason}"
            note = Message(
                sender=actor,
                sender_id=current.party_id(actor),
                body=body,
                sent_at=now,
            )
            fields: dict[str, Any] = {"messages": (*current.messages, note)}
            fields.update(
                self._status_fields(current, AppointmentStatus.CANCELLED, actor, now, notes=reason)
            )
            return _Change(fields, actor, rule.requires_notification, reason)

        record = await self._mutate(appointment_id, apply)
        logger.info("Appointment {} cancelled by {}", appointment_id, actor.value)
        return record

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
        has_proposal = any(v is not None for v in (proposed_date, proposed_time, proposed_duration))
        if has_proposal and new_status != AppointmentStatus.RESCHEDULED:
            raise ValidationError(
                "A proposed date, time or duration is only accepted when rescheduling.",
                field="proposed_date",
            )
        if (proposed_date is None) != (proposed_time is None):
            raise ValidationError(
                "A reschedule proposal needs both a date and a time.",
                field="proposed_date" if proposed_date is None else "proposed_time",
            )
        _require_positive(proposed_duration, "proposed_duration")

        def apply(current: AppointmentRecord, now: dt.datetime) -> _Change:
            self._refuse_owned_move(current, new_status, actor)
            rule = self._require_rule(current, new_status, actor)
            fields: dict[str, Any] = {}
            if new_status == AppointmentStatus.CONFIRMED:
                fields["confirmed_details"] = self._confirmation(current, actor, now)
            fields.update(
                self._status_fields(
                    current,
                    new_status,
                    actor,
                    now,
                    notes=notes,
                    proposed_date=proposed_date,
                    proposed_time=proposed_time,
                    proposed_duration=proposed_duration,
                )
            )
            return _Change(fields, actor, rule.requires_notification, notes)

        record = await self._mutate(appointment_id, apply)
        logger.info(
            "Appointment {} moved to {} by {}", appointment_id, new_status.value, actor.value
        )
        return record

    # --- Conversation -------------------------------------------------------

    async def add_message(
        self, appointment_id: str, sender: Actor, sender_id: str, body: str
    ) -> AppointmentRecord:
        if sender not in _PARTIES:
            raise ValidationError(
                "Only the patient or the clinic can send messages.", field="sender"
            )
        if not body or not body.strip():
            raise ValidationError("Message body must not be empty.", field="body")

        def apply(current: AppointmentRecord, now: dt.datetime) -> _Change:
            if sender_id != current.party_id(sender):
                raise ValidationError(
                    f"{sender.value.capitalize()} {sender_id} is not a party to this appointment.",
                    field="sender_id",
                )
            message = Message(sender=sender, sender_id=sender_id, body=body, sent_at=now)
            return _Change({"messages": (*current.messages, message)}, sender)

        record = await self._mutate(appointment_id, apply)
        logger.info("Message added to appointment {} by {}", appointment_id, sender.value)
        return record

    async def mark_messages_read(self, appointment_id: str, reader: Actor) -> AppointmentRecord:
        if reader not in _PARTIES:
            raise ValidationError(
                "Only the patient or the clinic can read messages.", field="reader"
            )

        def apply(current: AppointmentRecord, now: dt.datetime) -> _Change | None:
            if not current.unread_messages_for(reader):
                return None
            messages = tuple(
                m.model_copy(update={"read_at": now})
                if m.sender != reader and m.read_at is None
                else m
                for m in current.messages
            )
            return _Change({"messages": messages}, reader)

        return await self._mutate(appointment_id, apply)

    # --- Queries ------------------------------------------------------------

    async def get_appointment(self, appointment_id: str) -> AppointmentRecord:
        return await self._load(appointment_id)

    async def get_valid_actions(
        self, appointment_id: str, actor: Actor
    ) -> frozenset[AppointmentStatus]:
        record = await self._load(appointment_id)
        return valid_transitions(record.status, actor)

    async def list_for_patient(self, patient_id: str) -> list[AppointmentRecord]:
        records = await self._repository.find_by_patient(patient_id)
        return sorted(records, key=lambda r: r.last_activity_at, reverse=True)

    async def list_for_clinic(
        self, clinic_id: str, status: AppointmentStatus | None = None
    ) -> list[AppointmentRecord]:
        records = await self._repository.find_by_clinic(clinic_id)
        if status is not None:
            records = [r for r in records if r.status == status]
        return sorted(records, key=lambda r: r.last_activity_at, reverse=True)

    async def upcoming_for_patient(
        self, patient_id: str, limit: int = 5
    ) -> list[AppointmentRecord]:
        if limit < 1:
            raise ValidationError("'limit' must be at least 1.", field="limit")

        now = self._clock().astimezone(self._clinic_tz).replace(tzinfo=None)
        upcoming = [
            r
            for r in await self._repository.find_by_patient(patient_id)
            if r.status == AppointmentStatus.CONFIRMED and _starts_at(r) >= now
        ]
        upcoming.sort(key=_starts_at)
        return upcoming[:limit]

    async def clinic_statistics(
        self,
        clinic_id: str,
        start_date: dt.date | None = None,
        end_date: dt.date | None = None,
    ) -> ClinicStatistics:
        if start_date and end_date and start_date > end_date:
            raise ValidationError("'start_date' must not be after 'end_date'.", field="start_date")

        by_status = dict.fromkeys(AppointmentStatus, 0)
        for record in await self._repository.find_by_clinic(clinic_id):
            day = record.scheduled_slot.date
            if start_date and day < start_date:
                continue
            if end_date and day > end_date:
                continue
            by_status[record.status] += 1

        return ClinicStatistics(
            clinic_id=clinic_id,
            start_date=start_date,
            end_date=end_date,
            total=sum(by_status.values()),
            by_status=by_status,
        )

    async def close(self) -> None:
        await self._notifier.close()
        logger.info("Negotiation engine closed")

    # --- Internals ----------------------------------------------------------

    async def _load(self, appointment_id: str) -> AppointmentRecord:
        record = await self._repository.find_by_id(appointment_id)
        if record is None:
            logger.debug("Appointment {} not found", appointment_id)
            raise NotFoundError(appointment_id)
        return record

    async def _mutate(self, appointment_id: str, operation: Operation) -> AppointmentRecord:
        """Apply ``operation`` under the appointment's lock and persist the result.

        A version conflict on save reloads the record and re-runs the
        operation, so the retry is validated against the fresh state.
        """
        attempt = 0
        while True:
            async with self._locks.hold(appointment_id):
                current = await self._load(appointment_id)
                now = self._next_timestamp(current)
                change = operation(current, now)
                if change is None:
                    logger.debug("Appointment {} unchanged", appointment_id)
                    return current

                updated = current.evolve(
                    **change.fields,
                    last_activity_at=now,
                    updated_at=now,
                    version=current.version + 1,
                )
                try:
                    await self._repository.save(updated, expected_version=current.version)
                except ConflictError:
                    attempt += 1
                    if attempt > self._conflict_retries:
                        logger.warning(
                            "Giving up on appointment {} after {} conflicting saves",
                            appointment_id,
                            attempt,
                        )
                        raise
                    logger.warning(
                        "Appointment {} changed concurrently, retrying ({}/{})",
                        appointment_id,
                        attempt,
                        self._conflict_retries,
                    )
                    continue

            if change.notify:
                await self._dispatch(updated, change.actor, change.message)
            return updated

    async def _reject_duplicate(self, patient_id: str, request: AppointmentRequest) -> None:
        requested = dt.datetime.combine(request.requested_date, request.requested_time)
        for existing in await self._repository.find_by_patient(patient_id):
            if existing.is_terminal:
                continue
            if abs(_starts_at(existing) - requested) <= DUPLICATE_WINDOW:
                logger.debug(
                    "Patient {} already has appointment {} near {}",
                    patient_id,
                    existing.appointment_id,
                    requested,
                )
                raise ValidationError(
                    "Patient already has an appointment around this time.",
                    field="requested_time",
                )

    def _next_timestamp(self, current: AppointmentRecord) -> dt.datetime:
        """Current time, nudged forward so activity timestamps strictly increase."""
        now = self._clock()
        if now <= current.last_activity_at:
            now = current.last_activity_at + dt.timedelta(microseconds=1)
        return now

    def _require_rule(
        self, current: AppointmentRecord, target: AppointmentStatus, actor: Actor
    ) -> TransitionRule:
        rule = rule_for(current.status, target, actor)
        if rule is None:
            logger.debug(
                "Rejected transition for appointment {}: {} -> {} by {}",
                current.appointment_id,
                current.status.value,
                target.value,
                actor.value,
            )
            raise InvalidTransitionError(current.status, target, actor)
        return rule

    def _refuse_owned_move(
        self, current: AppointmentRecord, target: AppointmentStatus, actor: Actor
    ) -> None:
        if target == AppointmentStatus.CANCELLED:
            owner = "cancel"
        else:
            owner = _RESPONSE_MOVES.get((current.status, target))
        if owner is None:
            return
        raise InvalidTransitionError(
            current.status,
            target,
            actor,
            reason=(
                f"Moving an appointment from {current.status.value} to {target.value} "
                f"goes through {owner}"
            ),
        )

    def _status_fields(
        self,
        current: AppointmentRecord,
        target: AppointmentStatus,
        actor: Actor,
        now: dt.datetime,
        *,
        notes: str | None = None,
        proposed_date: dt.date | None = None,
        proposed_time: dt.time | None = None,
        proposed_duration: int | None = None,
    ) -> dict[str, Any]:
        change = StatusChange(
            from_status=current.status,
            to_status=target,
            updated_by=actor,
            notes=notes,
            proposed_date=proposed_date,
            proposed_time=proposed_time,
            proposed_duration=proposed_duration,
            changed_at=now,
        )
        return {"status": target, "status_history": (*current.status_history, change)}

    def _clinic_entry(
        self, response: ClinicResponse, responded_by: str, now: dt.datetime
    ) -> ClinicResponseEntry:
        if response.response_type != ClinicResponseType.COUNTER_OFFER:
            return ClinicResponseEntry(
                response_type=response.response_type,
                message=response.message,
                responded_at=now,
                responded_by=responded_by,
            )

        if response.proposed_date is None:
            raise ValidationError("A counter-offer needs a proposed date.", field="proposed_date")
        if response.proposed_time is None:
            raise ValidationError("A counter-offer needs a proposed time.", field="proposed_time")
        _require_positive(response.proposed_duration, "proposed_duration")
        return ClinicResponseEntry(
            response_type=response.response_type,
            proposed_date=response.proposed_date,
            proposed_time=response.proposed_time,
            proposed_duration=response.proposed_duration,
            message=response.message,
            responded_at=now,
            responded_by=responded_by,
        )

    def _confirmation(
        self, current: AppointmentRecord, actor: Actor, now: dt.datetime
    ) -> ConfirmedDetails:
        terms = current.negotiated_terms()
        return ConfirmedDetails(
            final_date=terms.date,
            final_time=terms.time,
            final_duration=terms.duration,
            confirmed_at=now,
            confirmed_by=actor,
        )

    async def _dispatch(
        self, record: AppointmentRecord, actor: Actor, message: str | None = None
    ) -> None:
        """Notify the other party about ``record``'s current status. Never raises."""
        recipient = recipient_of(actor)
        try:
            recipient_id = record.party_id(recipient)
            context = build_notification_context(record, actor, message)
            await self._notifier.notify(
                recipient, recipient_id, record.appointment_id, record.status, context
            )
        except NotificationDeliveryError as exc:
            logger.warning(
                "Notification for appointment {} not delivered: {}",
                record.appointment_id,
                exc.reason,
            )
        except Exception:
            logger.exception(
                "Unexpected error notifying {} about appointment {}",
                recipient.value,
                record.appointment_id,
            )
        else:
            logger.debug(
                "Notified {} about appointment {} ({})",
                recipient.value,
                record.appointment_id,
                record.status.value,
            )
