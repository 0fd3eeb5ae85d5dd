# config.py
# ============================================================================
# RECONCILIATION SERVICE: CONFIGURATION
# ============================================================================
# Purpose: Resolve gateway credentials and service settings from environment
#
# Credentials are resolved on every invocation, never cached: the hosting
# platform may or may not reuse the process, and a rotated key must take
# effect on the next request.
# ============================================================================

import os
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional

from errors import ConfigurationError


class GatewayMode(str, Enum):
    TEST = "test"
    LIVE = "live"


def _first(env: Mapping[str, str], *names: str) -> Optional[str]:
    """First non-empty value among the given variable names"""
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


# ============================================================================
# SECTION 1: GATEWAY CREDENTIALS
# ============================================================================

@dataclass(frozen=True)
class GatewayCredentials:
    """Razorpay key pair for the active mode."""
    key_id: str
    key_secret: str
    mode: GatewayMode
    webhook_secret: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GatewayCredentials":
        env = os.environ if environ is None else environ
        mode = resolve_mode(env)
        suffix = mode.value.upper()

        key_id = _first(env, f"RAZORPAY_KEY_ID_{suffix}", "RAZORPAY_KEY_ID")
        if not key_id:
            raise ConfigurationError(f"Missing env: RAZORPAY_KEY_ID_{suffix}")

        key_secret = _first(env, f"RAZORPAY_KEY_SECRET_{suffix}", "RAZORPAY_KEY_SECRET")
        if not key_secret:
            raise ConfigurationError(f"Missing env: RAZORPAY_KEY_SECRET_{suffix}")

        return cls(
            key_id=key_id,
            key_secret=key_secret,
            mode=mode,
            webhook_secret=resolve_webhook_secret(env, mode),
        )


def resolve_mode(environ: Optional[Mapping[str, str]] = None) -> GatewayMode:
    env = os.environ if environ is None else environ
    raw = (env.get("RAZORPAY_MODE") or GatewayMode.TEST.value).strip().lower()
    try:
        return GatewayMode(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid RAZORPAY_MODE: {raw!r} (expected 'test' or 'live')"
        ) from None


def resolve_key_id(environ: Optional[Mapping[str, str]] = None) -> tuple[str, GatewayMode]:
    """Public key id only; used by the checkout widget, needs no secret."""
    env = os.environ if environ is None else environ
    mode = resolve_mode(env)
    suffix = mode.value.upper()
    key_id = _first(env, f"RAZORPAY_KEY_ID_{suffix}", "RAZORPAY_KEY_ID")
    if not key_id:
        raise ConfigurationError(f"Missing env: RAZORPAY_KEY_ID_{suffix}")
    return key_id, mode


def resolve_webhook_secret(
    environ: Optional[Mapping[str, str]] = None,
    mode: Optional[GatewayMode] = None,
) -> Optional[str]:
    """Webhook secret, or None when signature checking is disabled."""
    env = os.environ if environ is None else environ
    mode = mode or resolve_mode(env)
    return _first(
        env,
        f"RAZORPAY_WEBHOOK_SECRET_{mode.value.upper()}",
        "RAZORPAY_WEBHOOK_SECRET",
    )


# ============================================================================
# SECTION 2: SERVICE SETTINGS
# ============================================================================

@dataclass(frozen=True)
class AppConfig:
    """Non-secret service settings."""
    gateway_api_url: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = 8.0
    currency: str = "INR"
    materialize_timeout_seconds: float = 30.0
    site_url: str = "http://localhost:3000"
    customer_code_prefix: str = "CUE"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        env = os.environ if environ is None else environ
        return cls(
            gateway_api_url=env.get("GATEWAY_API_URL", cls.gateway_api_url).rstrip("/"),
            gateway_timeout_seconds=float(env.get("GATEWAY_TIMEOUT_SECONDS", "8.0")),
            currency=env.get("GATEWAY_CURRENCY", cls.currency).upper(),
            materialize_timeout_seconds=float(env.get("MATERIALIZE_TIMEOUT_SECONDS", "30.0")),
            site_url=(_first(env, "PUBLIC_SITE_URL", "SITE_URL") or cls.site_url).rstrip("/"),
            customer_code_prefix=env.get("CUSTOMER_CODE_PREFIX", cls.customer_code_prefix),
        )


class ServerConfig:
    """Process-level server settings from environment"""

    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))
    ENV = os.getenv("ENV", "development")
    DEBUG = ENV == "development"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    CORS_ORIGINS: List[str] = os.getenv("CORS_ORIGINS", "*").split(",")


server_config = ServerConfig()
