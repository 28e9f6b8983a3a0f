from typing import Any

from loguru import logger

from clinicflow.domain.models import Actor, AppointmentStatus


class LogNotificationGateway:
    """NotificationGateway that writes notifications to the log instead of delivering them."""

    async def notify(
        self,
        recipient_actor: Actor,
        recipient_id: str,
        appointment_id: str,
        new_status: AppointmentStatus,
        context: dict[str, Any],
    ) -> None:
        logger.info(
            "Notification for {} {}: appointment {} is {} ({})",
            recipient_actor.value,
            recipient_id,
            appointment_id,
            new_status.value,
            context.get("title", ""),
        )

    async def close(self) -> None:
        pass
