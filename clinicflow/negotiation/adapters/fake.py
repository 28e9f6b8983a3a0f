from typing import Any, NamedTuple

from clinicflow.domain.models import Actor, AppointmentStatus


class SentNotification(NamedTuple):
    recipient_actor: Actor
    recipient_id: str
    appointment_id: str
    new_status: AppointmentStatus
    context: dict[str, Any]


class FakeNotificationGateway:
    """In-memory test double for the NotificationGateway protocol.

    Set ``error`` to make every ``notify`` call raise it.  After calls,
    inspect ``sent`` to verify what the engine asked to deliver.
    """

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []
        self.error: Exception | None = None
        self.closed: bool = False

    async def notify(
        self,
        recipient_actor: Actor,
        recipient_id: str,
        appointment_id: str,
        new_status: AppointmentStatus,
        context: dict[str, Any],
    ) -> None:
        if self.error:
            raise self.error
        self.sent.append(
            SentNotification(recipient_actor, recipient_id, appointment_id, new_status, context)
        )

    async def close(self) -> None:
        self.closed = True

    @property
    def last(self) -> SentNotification | None:
        return self.sent[-1] if self.sent else None
