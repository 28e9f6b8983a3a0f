from typing import Callable

from loguru import logger

from clinicflow.config import AppConfig, NotifierBackend
from clinicflow.negotiation.adapters.log import LogNotificationGateway
from clinicflow.negotiation.adapters.memory import InMemoryAppointmentRepository
from clinicflow.negotiation.adapters.webhook import WebhookNotificationGateway
from clinicflow.negotiation.engine import NegotiationEngine
from clinicflow.negotiation.ports import AppointmentRepository, NotificationGateway


def _build_log(config: AppConfig) -> NotificationGateway:
    return LogNotificationGateway()


def _build_webhook(config: AppConfig) -> NotificationGateway:
    if not config.webhook.url:
        raise ValueError("CLINICFLOW_WEBHOOK_URL must be set to use the webhook notifier")
    return WebhookNotificationGateway(
        url=config.webhook.url,
        token=config.webhook.token,
        timeout_seconds=config.webhook.timeout_seconds,
    )


_NOTIFIERS: dict[NotifierBackend, Callable[[AppConfig], NotificationGateway]] = {
    NotifierBackend.LOG: _build_log,
    NotifierBackend.WEBHOOK: _build_webhook,
}


def build_negotiation_engine(
    config: AppConfig, repository: AppointmentRepository | None = None
) -> NegotiationEngine:
    """Build the negotiation engine based on config.

    Without a ``repository`` the engine keeps appointments in memory.
    """
    backend = config.negotiation.notifier
    logger.info("Building negotiation engine with notifier: {}", backend.value)
    if repository is None:
        repository = InMemoryAppointmentRepository()
    return NegotiationEngine(
        repository,
        _NOTIFIERS[backend](config),
        conflict_retries=config.negotiation.conflict_retries,
        reject_past_requests=config.negotiation.reject_past_requests,
        clinic_timezone=config.negotiation.clinic_timezone,
    )
