from pydantic import BaseModel, ConfigDict

from clinicflow.domain.models import Actor, AppointmentStatus


class TransitionRule(BaseModel):
    """A legal status change and the actors allowed to make it."""

    model_config = ConfigDict(frozen=True)

    from_status: AppointmentStatus
    to_status: AppointmentStatus
    allowed_actors: frozenset[Actor]
    requires_notification: bool
    requires_confirmation: bool = False


def _rule(
    from_status: AppointmentStatus,
    to_status: AppointmentStatus,
    *actors: Actor,
    notify: bool,
    confirm: bool = False,
) -> TransitionRule:
    return TransitionRule(
        from_status=from_status,
        to_status=to_status,
        allowed_actors=frozenset(actors),
        requires_notification=notify,
        requires_confirmation=confirm,
    )


_S = AppointmentStatus
_P = Actor.PATIENT
_C = Actor.CLINIC

TRANSITION_TABLE: tuple[TransitionRule, ...] = (
    _rule(_S.PENDING, _S.CONFIRMED, _C, notify=True),
    _rule(_S.PENDING, _S.COUNTER_OFFERED, _C, notify=True),
    _rule(_S.PENDING, _S.REJECTED, _C, notify=True),
    _rule(_S.PENDING, _S.CANCELLED, _P, _C, notify=True),
    _rule(_S.COUNTER_OFFERED, _S.CONFIRMED, _P, notify=True),
    _rule(_S.COUNTER_OFFERED, _S.REJECTED, _P, notify=True),
    _rule(_S.COUNTER_OFFERED, _S.CANCELLED, _P, _C, notify=True),
    _rule(_S.CONFIRMED, _S.IN_PROGRESS, _C, notify=False),
    _rule(_S.CONFIRMED, _S.RESCHEDULED, _P, _C, notify=True),
    _rule(_S.CONFIRMED, _S.CANCELLED, _P, _C, notify=True, confirm=True),
    _rule(_S.CONFIRMED, _S.NO_SHOW, _C, notify=False),
    _rule(_S.IN_PROGRESS, _S.COMPLETED, _C, notify=False),
    _rule(_S.IN_PROGRESS, _S.CANCELLED, _C, notify=True),
    _rule(_S.RESCHEDULED, _S.CONFIRMED, _C, notify=True),
    _rule(_S.RESCHEDULED, _S.CANCELLED, _P, _C, notify=True),
)

_BY_EDGE: dict[tuple[AppointmentStatus, AppointmentStatus], TransitionRule] = {
    (rule.from_status, rule.to_status): rule for rule in TRANSITION_TABLE
}


def rule_for(
    from_status: AppointmentStatus, to_status: AppointmentStatus, actor: Actor
) -> TransitionRule | None:
    """Return the rule allowing ``actor`` to move ``from_status`` -> ``to_status``, if any."""
    rule = _BY_EDGE.get((from_status, to_status))
    if rule is None or actor not in rule.allowed_actors:
        return None
    return rule


def is_legal(from_status: AppointmentStatus, to_status: AppointmentStatus, actor: Actor) -> bool:
    return rule_for(from_status, to_status, actor) is not None


def valid_transitions(
    current_status: AppointmentStatus, actor: Actor
) -> frozenset[AppointmentStatus]:
    """All statuses ``actor`` may move an appointment to from ``current_status``."""
    return frozenset(
        rule.to_status
        for rule in TRANSITION_TABLE
        if rule.from_status == current_status and actor in rule.allowed_actors
    )


def is_terminal(status: AppointmentStatus) -> bool:
    """True when no actor can move an appointment out of ``status``."""
    return not any(rule.from_status == status for rule in TRANSITION_TABLE)
