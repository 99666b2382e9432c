"""Configuration loading and management for short-render.

Settings come from environment variables (optionally seeded from .env
files) and, for the service quota table, an optional JSON file. The
resulting Settings object is passed explicitly to the components that
need it; nothing here is mutated after startup.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from short_render.errors import ConfigurationError
from short_render.models.usage import Service, ServiceCounters

SHOTSTACK_SANDBOX_URL = "https://api.shotstack.io/stage"
SHOTSTACK_PRODUCTION_URL = "https://api.shotstack.io/v1"


class ServiceLimit(BaseModel):
    """Quota and alert thresholds for one metered service.

    Exactly one of monthly_budget, monthly_credits or total_credit is set,
    depending on how the provider bills. Thresholds are in the same units
    as the quota and default to 75% / 90% of it.
    """

    service: Service
    monthly_budget: float | None = None  # USD per month
    monthly_credits: float | None = None  # provider credits per month
    total_credit: float | None = None  # one-off credit grant
    warning_threshold: float | None = None
    critical_threshold: float | None = None
    # Quota units one produced item consumes (credits per clip, USD per request, ...)
    cost_per_unit: float = 0.0
    is_bottleneck: bool = False
    # Quota units already spent outside this ledger (e.g. before it existed)
    current_used: float = 0.0
    # Which ledger counter consumes the quota, and how many units per count
    metered_by: Literal["cost", "requests", "tokens", "characters"] = "cost"
    units_per_measure: float = 1.0

    @model_validator(mode="after")
    def _check_quota(self) -> "ServiceLimit":
        quotas = [
            q for q in (self.monthly_budget, self.monthly_credits, self.total_credit)
            if q is not None
        ]
        if len(quotas) != 1:
            raise ValueError(
                f"{self.service.value}: exactly one of monthly_budget, "
                "monthly_credits or total_credit must be set"
            )
        if quotas[0] <= 0:
            raise ValueError(f"{self.service.value}: quota must be positive")
        if self.warning_threshold is None:
            self.warning_threshold = quotas[0] * 0.75
        if self.critical_threshold is None:
            self.critical_threshold = quotas[0] * 0.90
        return self

    @property
    def quota(self) -> float:
        """The configured quota, whichever form it takes."""
        for value in (self.monthly_budget, self.monthly_credits, self.total_credit):
            if value is not None:
                return value
        raise ConfigurationError(f"No quota configured for {self.service.value}")

    def usage_units(self, counters: ServiceCounters) -> float:
        """Convert ledger counters into quota units for this service."""
        return (getattr(counters, self.metered_by) or 0) * self.units_per_measure


def default_service_limits() -> list[ServiceLimit]:
    """Free-plan limits of the accounts the pipeline runs against."""
    return [
        ServiceLimit(
            service=Service.OPENAI,
            monthly_budget=20.00,
            warning_threshold=15.00,
            critical_threshold=18.00,
            cost_per_unit=0.000015,  # average USD per token
        ),
        ServiceLimit(
            service=Service.ELEVENLABS,
            monthly_credits=10000,
            warning_threshold=7500,
            critical_threshold=9000,
            cost_per_unit=150,  # credits per clip
            metered_by="characters",
        ),
        ServiceLimit(
            service=Service.HEYGEN,
            monthly_credits=10,
            warning_threshold=7,
            critical_threshold=9,
            cost_per_unit=0.5,  # credits per clip
            is_bottleneck=True,
            metered_by="requests",
            units_per_measure=0.5,
        ),
        ServiceLimit(
            service=Service.GOOGLE_CLOUD,
            total_credit=300.00,
            warning_threshold=225.00,
            critical_threshold=270.00,
            cost_per_unit=0.012,  # USD per request
        ),
    ]


class LocatorSettings(BaseModel):
    """Settings for the Cobalt locator service."""

    api_url: str = "http://localhost:9000/"
    user_agent: str = "Mozilla/5.0 (compatible; short-render/0.1)"
    timeout: float = 60.0
    max_attempts: int = Field(default=3, ge=1)
    # Seconds to wait after a 503 or network failure
    transient_delay: float = 5.0
    # Seconds to wait after a retryable error code
    retryable_code_delay: float = 2.0
    retryable_codes: list[str] = Field(default_factory=lambda: ["error.api.youtube.login"])


class RenderSettings(BaseModel):
    """Settings for the Shotstack render service."""

    sandbox_api_key: str | None = None
    sandbox_owner_id: str | None = None
    production_api_key: str | None = None
    production_owner_id: str | None = None
    timeout: float = 30.0
    poll_interval: float = 5.0
    max_render_polls: int = 120  # 10 minutes at 5s
    max_asset_polls: int = 60  # 5 minutes at 5s

    def base_url(self, production: bool) -> str:
        """API root for the chosen environment."""
        return SHOTSTACK_PRODUCTION_URL if production else SHOTSTACK_SANDBOX_URL

    def credentials(self, production: bool) -> tuple[str, str]:
        """Return (api_key, owner_id) for the chosen environment.

        Raises:
            ConfigurationError: If either value is missing
        """
        if production:
            api_key, owner_id = self.production_api_key, self.production_owner_id
        else:
            api_key, owner_id = self.sandbox_api_key, self.sandbox_owner_id
        if not api_key or not owner_id:
            mode = "production" if production else "sandbox"
            raise ConfigurationError(
                f"Shotstack {mode} API key or owner ID not configured",
                context={"has_api_key": bool(api_key), "has_owner_id": bool(owner_id)},
            )
        return api_key, owner_id


class StorageSettings(BaseModel):
    """Where daily usage logs live.

    R2 is used when Cloudflare credentials are present, otherwise a local
    directory if one is configured, otherwise memory only.
    """

    cloudflare_account_id: str | None = None
    cloudflare_api_token: str | None = None
    r2_bucket: str = "short-render-usage"
    usage_dir: Path | None = None

    @property
    def has_r2_credentials(self) -> bool:
        return bool(self.cloudflare_account_id and self.cloudflare_api_token)


class Settings(BaseModel):
    """Process-wide settings, built once at startup."""

    locator: LocatorSettings = Field(default_factory=LocatorSettings)
    render: RenderSettings = Field(default_factory=RenderSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    limits: list[ServiceLimit] = Field(default_factory=default_service_limits)

    @model_validator(mode="after")
    def _check_limits(self) -> "Settings":
        services = [limit.service for limit in self.limits]
        if len(services) != len(set(services)):
            raise ValueError("Duplicate service in limits table")
        if sum(1 for limit in self.limits if limit.is_bottleneck) > 1:
            raise ValueError("At most one service may be flagged as the bottleneck")
        return self


def load_env_files() -> None:
    """Load environment variables from .env files.

    Priority: local .env > ~/.short-render/.env
    """
    user_env = Path.home() / ".short-render" / ".env"
    if user_env.exists():
        load_dotenv(user_env)
    load_dotenv()


def load_service_limits(path: Path) -> list[ServiceLimit]:
    """Load a quota table from a JSON file.

    Args:
        path: File containing a list of ServiceLimit objects

    Returns:
        Parsed limits

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    if not path.exists():
        raise ConfigurationError(f"Limits file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return [ServiceLimit.model_validate(item) for item in data]
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid limits file {path}: {e}") from e


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Args:
        env: Mapping to read instead of os.environ

    Returns:
        Settings object
    """
    env = os.environ if env is None else env

    locator = LocatorSettings()
    if env.get("COBALT_API_URL"):
        locator.api_url = env["COBALT_API_URL"]
    if env.get("COBALT_USER_AGENT"):
        locator.user_agent = env["COBALT_USER_AGENT"]

    render = RenderSettings(
        sandbox_api_key=env.get("SHOTSTACK_SANDBOX_API_KEY"),
        sandbox_owner_id=env.get("SHOTSTACK_SANDBOX_OWNER_ID"),
        production_api_key=env.get("SHOTSTACK_PRODUCTION_API_KEY"),
        production_owner_id=env.get("SHOTSTACK_PRODUCTION_OWNER_ID"),
    )

    usage_dir = env.get("SHORT_RENDER_USAGE_DIR")
    storage = StorageSettings(
        cloudflare_account_id=env.get("CLOUDFLARE_ACCOUNT_ID"),
        cloudflare_api_token=env.get("CLOUDFLARE_API_TOKEN"),
        usage_dir=Path(usage_dir) if usage_dir else None,
    )
    if env.get("R2_BUCKET_NAME"):
        storage.r2_bucket = env["R2_BUCKET_NAME"]

    limits_file = env.get("SHORT_RENDER_LIMITS_FILE")
    limits = load_service_limits(Path(limits_file)) if limits_file else default_service_limits()

    try:
        return Settings(locator=locator, render=render, storage=storage, limits=limits)
    except ValueError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
