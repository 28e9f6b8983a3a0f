import datetime as dt
from collections.abc import Callable

import pytest

from clinicflow.domain.models import AppointmentRequest, VisitType
from clinicflow.negotiation.adapters.fake import FakeNotificationGateway
from clinicflow.negotiation.adapters.memory import InMemoryAppointmentRepository
from clinicflow.negotiation.engine import NegotiationEngine


class StepClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime(2025, 8, 1, 9, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        self.now += dt.timedelta(seconds=1)
        return self.now


@pytest.fixture
def repository() -> InMemoryAppointmentRepository:
    return InMemoryAppointmentRepository()


@pytest.fixture
def notifier() -> FakeNotificationGateway:
    return FakeNotificationGateway()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def id_factory() -> Callable[[], str]:
    counter = iter(range(1, 10_000))
    return lambda: f"appt-{next(counter)}"


@pytest.fixture
def engine(
    repository: InMemoryAppointmentRepository,
    notifier: FakeNotificationGateway,
    clock: StepClock,
    id_factory: Callable[[], str],
) -> NegotiationEngine:
    return NegotiationEngine(repository, notifier, clock=clock, id_factory=id_factory)


@pytest.fixture
def cleaning_request() -> AppointmentRequest:
    return AppointmentRequest(
        requested_date=dt.date(2025, 9, 1),
        requested_time=dt.time(10, 0),
        duration=30,
        visit_type=VisitType.CLEANING,
        reason="routine",
    )
