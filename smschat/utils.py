"""
Utility functions for the SMS chat API.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from twilio.request_validator import RequestValidator

logger = logging.getLogger(__name__)

# Fixed-width so that lexical order of stored timestamps equals time order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime as a fixed-width ISO-8601 UTC string."""
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def utc_now_iso() -> str:
    """Current server time as a stored timestamp string."""
    return format_timestamp(datetime.now(timezone.utc))


def utc_iso_hours_ago(hours: int) -> str:
    """Stored timestamp string for the moment `hours` before now."""
    return format_timestamp(datetime.now(timezone.utc) - timedelta(hours=hours))


def verify_twilio_signature(
    url: str,
    params: Mapping[str, str],
    signature: Optional[str],
    auth_token: Optional[str],
) -> bool:
    """
    Verify the X-Twilio-Signature header of a provider callback.

    Args:
        url: Full URL the provider posted to
        params: Form fields of the callback
        signature: Value of the X-Twilio-Signature header
        auth_token: Twilio auth token used to sign the request

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature or not auth_token:
        logger.info("Twilio signature verification: missing signature or auth token")
        return False

    validator = RequestValidator(auth_token)
    is_valid = validator.validate(url, dict(params), signature)
    logger.info(f"Twilio signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
