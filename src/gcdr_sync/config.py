"""Configuration loaded from environment variables (and a local .env file).

Environment Variables:
    GCDR_BASE_URL: Registry base URL (required)
    GCDR_API_KEY: Registry API key sent as X-API-Key (required)
    GCDR_TENANT_ID: Registry tenant; falls back to the customer's
        gcdrTenantId attribute when unset
    TB_BASE_URL: ThingsBoard base URL (required)
    TB_TOKEN: Pre-issued ThingsBoard JWT
    TB_USERNAME, TB_PASSWORD: ThingsBoard login, used when TB_TOKEN is unset
    SYNC_CONCURRENCY: Fan-out limit while building the plan (default: 5)
    SYNC_EXECUTION_CONCURRENCY: Actions in flight per level (default: 1)
    GCDR_RETRY_DELAY_SECONDS: Delay before the single 5xx retry (default: 1.0)
    GCDR_REQUEST_TIMEOUT_SECONDS: Per-request timeout (default: 30)
    SYNC_DETECT_UNCHANGED: Skip entities whose payload hash is unchanged (default: false)
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .api.exceptions import ConfigurationError


def _flag(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _number(env: Mapping[str, str], key: str, default: str, cast):
    raw = env.get(key) or default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}", missing_keys=[key])


@dataclass
class SyncConfig:
    """Settings for one sync process."""

    gcdr_base_url: str
    gcdr_api_key: str
    tb_base_url: str
    gcdr_tenant_id: Optional[str] = None
    tb_token: Optional[str] = None
    tb_username: Optional[str] = None
    tb_password: Optional[str] = None
    concurrency: int = 5
    execution_concurrency: int = 1
    retry_delay: float = 1.0
    request_timeout: float = 30.0
    detect_unchanged: bool = False

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        load_env_file: bool = True,
    ) -> "SyncConfig":
        """Build the config from ``env`` (defaults to os.environ).

        Raises:
            ConfigurationError: If a required variable is missing or invalid
        """
        if env is None:
            if load_env_file:
                load_dotenv()
            env = os.environ

        missing = [
            key for key in ("GCDR_BASE_URL", "GCDR_API_KEY", "TB_BASE_URL")
            if not env.get(key)
        ]
        has_tb_login = env.get("TB_USERNAME") and env.get("TB_PASSWORD")
        if not env.get("TB_TOKEN") and not has_tb_login:
            missing.append("TB_TOKEN")
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing_keys=missing,
            )

        config = cls(
            gcdr_base_url=env["GCDR_BASE_URL"],
            gcdr_api_key=env["GCDR_API_KEY"],
            tb_base_url=env["TB_BASE_URL"],
            gcdr_tenant_id=env.get("GCDR_TENANT_ID") or None,
            tb_token=env.get("TB_TOKEN") or None,
            tb_username=env.get("TB_USERNAME") or None,
            tb_password=env.get("TB_PASSWORD") or None,
            concurrency=_number(env, "SYNC_CONCURRENCY", "5", int),
            execution_concurrency=_number(env, "SYNC_EXECUTION_CONCURRENCY", "1", int),
            retry_delay=_number(env, "GCDR_RETRY_DELAY_SECONDS", "1.0", float),
            request_timeout=_number(env, "GCDR_REQUEST_TIMEOUT_SECONDS", "30", float),
            detect_unchanged=_flag(env.get("SYNC_DETECT_UNCHANGED")),
        )
        config.validate()
        return config

    def validate(self) -> None:
        for key, value in (
            ("SYNC_CONCURRENCY", self.concurrency),
            ("SYNC_EXECUTION_CONCURRENCY", self.execution_concurrency),
        ):
            if value < 1:
                raise ConfigurationError(f"{key} must be >= 1, got {value}", missing_keys=[key])

    def __repr__(self) -> str:
        return (
            f"SyncConfig("
            f"gcdr={self.gcdr_base_url}, "
            f"tb={self.tb_base_url}, "
            f"tenant={self.gcdr_tenant_id or '<from customer>'}, "
            f"concurrency={self.concurrency}/{self.execution_concurrency}, "
            f"detect_unchanged={self.detect_unchanged})"
        )
