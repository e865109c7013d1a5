"""Centralized configuration for the Sahay scheduling assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/sahay/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/sahay/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _lookup(name: str) -> str | None:
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value.strip()
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(*names: str) -> str:
    """Return the first configured value among *names*, or raise a clear error."""
    for name in names:
        value = _lookup(name)
        if value:
            return value

    raise OSError(
        f"Missing required configuration: {' / '.join(names)}. "
        f"Set it in .env (local) or SSM Parameter Store /sahay/{names[0]} (AWS)."
    )


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
# Pass 1 picks tools and should be near-deterministic; pass 2 only phrases.
REASONING_TEMPERATURE: float = float(os.getenv("REASONING_TEMPERATURE", "0.1"))
RESPONSE_TEMPERATURE: float = float(os.getenv("RESPONSE_TEMPERATURE", "0.7"))

# ── Clinic persona ──────────────────────────────────────────────────
CLINIC_NAME: str = os.getenv("CLINIC_NAME", "Prudence Hospitals")
ASSISTANT_NAME: str = os.getenv("ASSISTANT_NAME", "Sahay")
DEFAULT_COUNTRY_CODE: str = os.getenv("DEFAULT_COUNTRY_CODE", "91")

# ── Supabase (backing store) ────────────────────────────────────────
SUPABASE_URL: str = _require_env("SUPABASE_URL").rstrip("/")
SUPABASE_KEY: str = _require_env(
    "SUPABASE_KEY", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_ANON_KEY",
)
STORE_TIMEOUT_SECONDS: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "30"))

# ── Data gateway ────────────────────────────────────────────────────
GATEWAY_MAX_ATTEMPTS: int = int(os.getenv("GATEWAY_MAX_ATTEMPTS", "3"))
GATEWAY_BASE_DELAY_SECONDS: float = float(os.getenv("GATEWAY_BASE_DELAY_SECONDS", "0.1"))
GATEWAY_DEADLINE_SECONDS: float = float(os.getenv("GATEWAY_DEADLINE_SECONDS", "10"))

# ── SMS notifications (optional) ────────────────────────────────────
TWILIO_ACCOUNT_SID: str | None = _lookup("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN: str | None = _lookup("TWILIO_AUTH_TOKEN")
TWILIO_FROM_NUMBER: str | None = os.getenv("TWILIO_FROM_NUMBER")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
