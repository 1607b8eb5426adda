"""
Resolution of the Twilio credentials used for outbound SMS.

Environment variables win; anything still missing is looked up in an AWS
Secrets Manager secret when TWILIO_SECRET_NAME is set. Secret-store
failures are logged and treated as absent values, never raised.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from smschat.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Settings attribute -> key inside the Secrets Manager JSON document
SECRET_KEYS = {
    "TWILIO_ACCOUNT_SID": "account_sid",
    "TWILIO_AUTH_TOKEN": "auth_token",
    "TWILIO_PHONE_NUMBER": "phone_number",
}


@dataclass(frozen=True)
class ProviderConfig:
    """Credentials and sender number for the SMS provider."""

    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    phone_number: Optional[str] = None

    def missing_fields(self) -> list[str]:
        return [
            env_name
            for env_name, value in (
                ("TWILIO_ACCOUNT_SID", self.account_sid),
                ("TWILIO_AUTH_TOKEN", self.auth_token),
                ("TWILIO_PHONE_NUMBER", self.phone_number),
            )
            if not value or not value.strip()
        ]

    def is_configured(self) -> bool:
        return not self.missing_fields()


def fetch_secret_values(secret_name: str, region_name: str) -> dict:
    """
    Fetch the Twilio secret document from AWS Secrets Manager.

    Expects the secret value to be a JSON object, e.g.:

        {
          "account_sid": "...",
          "auth_token": "...",
          "phone_number": "+1..."
        }

    Returns an empty dict when the secret cannot be read or decoded.
    """
    logger.info(
        "Fetching Twilio secrets from Secrets Manager",
        extra={"secret_name": secret_name, "region": region_name},
    )

    try:
        client = boto3.client("secretsmanager", region_name=region_name)
        resp = client.get_secret_value(SecretId=secret_name)
    except (BotoCoreError, ClientError) as e:
        logger.warning(
            "Could not read Twilio secret",
            extra={"secret_name": secret_name, "error": str(e)},
        )
        return {}

    secret_str = resp.get("SecretString")
    if not secret_str:
        logger.warning(f"Secret '{secret_name}' has no SecretString payload")
        return {}

    try:
        data = json.loads(secret_str)
    except json.JSONDecodeError as e:
        logger.warning(
            "SecretString is not valid JSON",
            extra={"secret_name": secret_name, "error": str(e)},
        )
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Secret '{secret_name}' is not a JSON object")
        return {}

    return data


def resolve_provider_config(settings: Settings) -> ProviderConfig:
    """Build a ProviderConfig from the environment, falling back to the secret store."""
    values = {name: getattr(settings, name) for name in SECRET_KEYS}
    missing = [name for name, value in values.items() if not value]

    if missing and settings.TWILIO_SECRET_NAME:
        logger.debug(f"Twilio values missing from environment: {missing}")
        secret = fetch_secret_values(settings.TWILIO_SECRET_NAME, settings.AWS_REGION)
        for name in missing:
            value = secret.get(SECRET_KEYS[name])
            if isinstance(value, str) and value:
                values[name] = value

    return ProviderConfig(
        account_sid=values["TWILIO_ACCOUNT_SID"],
        auth_token=values["TWILIO_AUTH_TOKEN"],
        phone_number=values["TWILIO_PHONE_NUMBER"],
    )


@lru_cache()
def get_provider_config() -> ProviderConfig:
    """
    Cached provider configuration, used as a FastAPI dependency.
    Resolved once per process so the secret store is not hit per request.
    """
    return resolve_provider_config(get_settings())
