"""
Message lifecycle: creation, delivery attempt and status reconciliation.

States are sending -> {sent, delivered, failed}. `sending` is assigned at
creation before the provider is contacted; delivered and failed are
terminal; sent may still move to delivered or failed but never back to
sending. Status callbacks and polling both go through
`map_provider_status` and `storage.update_message`.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy.orm import Session

from smschat import storage
from smschat.config import get_settings
from smschat.gateway import DeliveryError, TwilioGateway, get_gateway
from smschat.metrics import record_sms_send, record_status_refresh_updates
from smschat.models import DIRECTION_OUTBOUND
from smschat.provider_config import ProviderConfig, get_provider_config
from smschat.schemas import MessageCreate, format_validation_errors
from smschat.status_mapper import (
    PENDING_STATUSES,
    STATUS_FAILED,
    STATUS_SENDING,
    can_transition,
    map_provider_status,
)
from smschat.utils import utc_iso_hours_ago

logger = logging.getLogger(__name__)

DEFAULT_POLL_WINDOW_HOURS = 24
NOT_CONFIGURED_ERROR = "SMS provider is not configured"


class MessageValidationError(Exception):
    """New message fields failed validation; nothing was stored or sent."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class CallbackResult(str, enum.Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    NOT_FOUND = "not_found"


@dataclass
class SendOutcome:
    """Result of `send_message`; the record is always persisted."""

    message: object
    ok: bool
    error: Optional[str] = None


@dataclass
class RefreshOutcome:
    messages: list = field(default_factory=list)
    updates_count: int = 0


class MessageLifecycleService:
    """
    Orchestrates a message from creation to confirmed delivery status.

    Provider configuration and gateway are injected so the not-configured
    path needs no environment manipulation.
    """

    def __init__(
        self,
        db: Session,
        provider_config: ProviderConfig,
        gateway: TwilioGateway,
        status_callback_url: Optional[str] = None,
        poll_window_hours: int = DEFAULT_POLL_WINDOW_HOURS,
    ):
        self.db = db
        self.provider_config = provider_config
        self.gateway = gateway
        self.status_callback_url = status_callback_url
        self.poll_window_hours = poll_window_hours

    def list_messages(self, owner: str) -> list:
        return storage.list_messages(self.db, owner)

    def send_message(self, owner: str, phone_number, message_body) -> SendOutcome:
        """
        Validate, persist as `sending`, then attempt delivery once.

        Raises:
            MessageValidationError: invalid fields; no store write, no provider call
        """
        try:
            draft = MessageCreate(phone_number=phone_number, message_body=message_body)
        except ValidationError as e:
            raise MessageValidationError(format_validation_errors(e.errors()))

        message = storage.create_message(
            self.db,
            owner=owner,
            phone_number=draft.phone_number,
            message_body=draft.message_body,
            direction=DIRECTION_OUTBOUND,
            status=STATUS_SENDING,
        )

        if not self.provider_config.is_configured():
            logger.warning(
                "SMS provider not configured, marking message failed",
                extra={"message_id": message.id, "missing": self.provider_config.missing_fields()},
            )
            record_sms_send("not_configured")
            storage.update_message(self.db, message, status=STATUS_FAILED)
            return SendOutcome(message=message, ok=False, error=NOT_CONFIGURED_ERROR)

        result = self.gateway.send(
            to=message.phone_number,
            body=message.message_body,
            status_callback=self.status_callback_url,
        )

        if not result.ok:
            logger.info(f"Message {message.id} delivery failed: {result.error}")
            storage.update_message(self.db, message, status=STATUS_FAILED)
            return SendOutcome(message=message, ok=False, error=result.error)

        storage.update_message(
            self.db,
            message,
            provider_message_id=result.provider_message_id,
            status=map_provider_status(result.provider_status),
        )
        return SendOutcome(message=message, ok=True)

    def apply_status_callback(self, provider_message_id: str, provider_status: str) -> CallbackResult:
        """
        Apply an asynchronous provider status report.

        Idempotent: a report that maps to the current status writes nothing.
        A report that would move the message back to `sending` is ignored.
        """
        message = storage.get_message_by_provider_id(self.db, provider_message_id)
        if message is None:
            logger.warning(f"Status update for unknown provider id: {provider_message_id}")
            return CallbackResult.NOT_FOUND

        old_status = message.status
        new_status = map_provider_status(provider_status)
        if not can_transition(old_status, new_status):
            logger.debug(f"Status for {provider_message_id} kept at {old_status} (reported {provider_status})")
            return CallbackResult.UNCHANGED

        storage.update_message(self.db, message, status=new_status)
        logger.info(f"Updated message {provider_message_id} status from {old_status} to {new_status}")
        return CallbackResult.UPDATED

    def refresh_statuses(self, owner: str) -> RefreshOutcome:
        """
        Poll the provider for the owner's recent non-terminal messages.

        One provider query per candidate, sequentially; a failed query is
        logged and skipped. Returns the owner's full list either way.
        """
        updates_count = 0

        if self.provider_config.is_configured():
            candidates = storage.list_pending_messages(
                self.db,
                owner=owner,
                direction=DIRECTION_OUTBOUND,
                statuses=PENDING_STATUSES,
                created_since=utc_iso_hours_ago(self.poll_window_hours),
            )
            logger.debug(f"Refreshing {len(candidates)} pending messages for {owner}")

            for message in candidates:
                try:
                    provider_status = self.gateway.fetch_status(message.provider_message_id)
                except DeliveryError as e:
                    logger.warning(
                        f"Could not refresh status for {message.provider_message_id}: {e}"
                    )
                    continue

                new_status = map_provider_status(provider_status)
                if can_transition(message.status, new_status):
                    old_status = message.status
                    storage.update_message(self.db, message, status=new_status)
                    updates_count += 1
                    logger.info(
                        f"Polled message {message.provider_message_id} status from {old_status} to {new_status}"
                    )
        else:
            logger.debug("SMS provider not configured, skipping status refresh")

        record_status_refresh_updates(updates_count)
        return RefreshOutcome(messages=self.list_messages(owner), updates_count=updates_count)


def get_lifecycle_service(
    db: Session = Depends(storage.get_db),
    provider_config: ProviderConfig = Depends(get_provider_config),
    gateway: TwilioGateway = Depends(get_gateway),
) -> MessageLifecycleService:
    settings = get_settings()
    return MessageLifecycleService(
        db,
        provider_config,
        gateway,
        status_callback_url=settings.status_callback_url,
        poll_window_hours=settings.STATUS_POLL_WINDOW_HOURS,
    )
