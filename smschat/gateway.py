"""
Delivery gateway for outbound SMS through Twilio.

`TwilioGateway.send` never raises: every provider-side problem (REST error,
rate limit, invalid number, auth failure, timeout, network fault) comes back
as a failed `DeliveryResult`. The raw provider text is only logged; callers
get a generic summary.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client as TwilioClient

from smschat.config import get_settings
from smschat.metrics import record_sms_send
from smschat.provider_config import ProviderConfig, get_provider_config

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# Twilio error codes worth a more specific summary for the caller
INVALID_NUMBER_ERRORS = {21211, 21212, 21214, 21612, 21614}
RATE_LIMIT_ERRORS = {20429, 14107}
AUTH_ERRORS = {20003, 20005}


class DeliveryError(Exception):
    """A provider call failed; the message is a caller-safe summary."""


@dataclass(frozen=True)
class DeliveryResult:
    """Uniform outcome of a send attempt."""

    ok: bool
    provider_message_id: Optional[str] = None
    provider_status: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, provider_message_id: str, provider_status: str) -> "DeliveryResult":
        return cls(ok=True, provider_message_id=provider_message_id, provider_status=provider_status)

    @classmethod
    def failure(cls, error: str) -> "DeliveryResult":
        return cls(ok=False, error=error)


def summarize_provider_error(error: Exception) -> str:
    """Generic, caller-safe description of a provider exception."""
    if isinstance(error, TwilioRestException):
        code = error.code
        if code in INVALID_NUMBER_ERRORS:
            return "The destination phone number was rejected by the SMS provider"
        if code in RATE_LIMIT_ERRORS or error.status == 429:
            return "The SMS provider is rate limiting requests, try again later"
        if code in AUTH_ERRORS or error.status in (401, 403):
            return "The SMS provider rejected the configured credentials"
        return "The SMS provider rejected the message"
    return "The SMS provider could not be reached"


class TwilioGateway:
    """
    Sends messages and fetches delivery status through the Twilio REST API.

    A single attempt is made per call, bounded by `timeout` seconds.
    """

    def __init__(
        self,
        config: ProviderConfig,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client=None,
    ):
        self.config = config
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            http_client = TwilioHttpClient(timeout=self.timeout)
            self._client = TwilioClient(
                self.config.account_sid,
                self.config.auth_token,
                http_client=http_client,
            )
        return self._client

    def send(self, to: str, body: str, status_callback: Optional[str] = None) -> DeliveryResult:
        """
        Submit one outbound SMS.

        Args:
            to: Destination phone number
            body: Message text
            status_callback: URL the provider should post status changes to

        Returns:
            DeliveryResult with the provider SID and initial status, or the
            failure summary.
        """
        params = {
            "to": to,
            "from_": self.config.phone_number,
            "body": body,
        }
        if status_callback:
            params["status_callback"] = status_callback

        try:
            message = self.client.messages.create(**params)
        except TwilioRestException as e:
            logger.error(
                "Twilio rejected message",
                extra={"to": to, "code": e.code, "http_status": e.status, "error": e.msg},
            )
            record_sms_send("rejected")
            return DeliveryResult.failure(summarize_provider_error(e))
        except Exception as e:
            logger.error(
                "Twilio send failed",
                extra={"to": to, "error": str(e), "error_type": type(e).__name__},
            )
            record_sms_send("rejected")
            return DeliveryResult.failure(summarize_provider_error(e))

        sid = getattr(message, "sid", None)
        status = getattr(message, "status", None) or "queued"
        if not sid:
            logger.error("Twilio response carried no message SID", extra={"to": to})
            record_sms_send("rejected")
            return DeliveryResult.failure("The SMS provider returned an incomplete response")

        logger.info(f"Twilio accepted message: sid={sid}, status={status}")
        record_sms_send("accepted")
        return DeliveryResult.success(sid, status)

    def fetch_status(self, provider_message_id: str) -> str:
        """
        Current provider-side status of a previously sent message.

        Raises:
            DeliveryError: the provider could not be queried
        """
        try:
            message = self.client.messages(provider_message_id).fetch()
        except TwilioRestException as e:
            logger.warning(
                "Twilio status fetch rejected",
                extra={"sid": provider_message_id, "code": e.code, "error": e.msg},
            )
            raise DeliveryError(summarize_provider_error(e)) from e
        except Exception as e:
            logger.warning(
                "Twilio status fetch failed",
                extra={"sid": provider_message_id, "error": str(e)},
            )
            raise DeliveryError(summarize_provider_error(e)) from e

        status = getattr(message, "status", None)
        if not status:
            raise DeliveryError("The SMS provider returned an incomplete response")
        return status


@lru_cache()
def get_gateway() -> TwilioGateway:
    """Process-wide gateway, used as a FastAPI dependency."""
    return TwilioGateway(
        get_provider_config(),
        timeout=get_settings().TWILIO_TIMEOUT_SECONDS,
    )
