from typing import Any

import httpx
from loguru import logger

from clinicflow.domain.exceptions import NotificationDeliveryError
from clinicflow.domain.models import Actor, AppointmentStatus


class WebhookNotificationGateway:
    """NotificationGateway that POSTs each notification as JSON to a delivery service.

    The delivery service (push, email, in-app) is outside this package; it
    only has to accept::

        {"recipient": {"actor": "patient", "id": "P1"},
         "appointment_id": "...", "status": "confirmed", "context": {...}}
    """

    def __init__(
        self,
        url: str,
        *,
        token: str = "",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._token = token or None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def notify(
        self,
        recipient_actor: Actor,
        recipient_id: str,
        appointment_id: str,
        new_status: AppointmentStatus,
        context: dict[str, Any],
    ) -> None:
        payload: dict[str, Any] = {
            "recipient": {"actor": recipient_actor.value, "id": recipient_id},
            "appointment_id": appointment_id,
            "status": new_status.value,
            "context": context,
        }
        try:
            resp = await self._client.post(self._url, headers=self._headers(), json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationDeliveryError(
                f"delivery service returned {exc.response.status_code}",
                recipient_id=recipient_id,
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationDeliveryError(
                f"delivery request failed: {exc}", recipient_id=recipient_id
            ) from exc

        logger.debug(
            "Delivered {} notification for appointment {} to {}",
            new_status.value,
            appointment_id,
            recipient_actor.value,
        )

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Notification webhook client closed")
