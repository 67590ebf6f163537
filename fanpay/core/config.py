from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from fanpay.core.exceptions import ConfigurationError

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_csv_list(v: Any, default: List[str]) -> List[str]:
    try:
        if v is None or v == "":
            return default.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return default.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or default.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or default.copy()
    except Exception:
        return default.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # Store: "mongo" in deployments, "memory" for local runs and tests
    store_backend: str = Field(default="mongo", alias="STORE_BACKEND")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="fanpay", alias="MONGODB_DB_NAME")

    # Redis (arq worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Stripe
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE")

    # Site / ownership
    site_url: str = Field(default="", alias="SITE_URL")
    owner_profile_id: str = Field(default="", alias="OWNER_PROFILE_ID")

    # Cron
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_csv_list(getattr(self, "cors_origins_raw", None), _DEFAULT_CORS)

    # Checkout rate limit (per user + client IP)
    checkout_rate_window_seconds: int = 60
    checkout_rate_max: int = 20
    # Reverse proxies in front of the app that append to X-Forwarded-For.
    # 0 means forwarding headers are ignored and the socket peer is the client.
    trusted_proxy_hops: int = Field(default=0, ge=0, alias="TRUSTED_PROXY_HOPS")

    # Gift policy defaults (a stored monetization settings row overrides these)
    gifts_enabled: bool = Field(default=True, alias="GIFTS_ENABLED")
    allow_custom_gift_amount: bool = Field(default=True, alias="ALLOW_CUSTOM_GIFT_AMOUNT")
    allow_anonymous_gifts: bool = Field(default=False, alias="ALLOW_ANONYMOUS_GIFTS")
    min_gift_cents: int = Field(default=100, alias="MIN_GIFT_CENTS")
    max_gift_cents: int = Field(default=20000, alias="MAX_GIFT_CENTS")
    gift_currency: str = "usd"
    gift_presets_raw: str = Field(default="100,300,500,1000,2000", alias="GIFT_PRESETS")

    @property
    def gift_presets(self) -> List[int]:
        out = []
        for v in _parse_csv_list(self.gift_presets_raw, []):
            try:
                out.append(int(v))
            except (TypeError, ValueError):
                continue
        return out

    # VIP tiers: minimum coins spent on gifts in a calendar month
    vip_bronze_coins: int = 1000
    vip_silver_coins: int = 5000
    vip_gold_coins: int = 15000
    vip_diamond_coins: int = 40000

    def require_payments(self) -> None:
        """Fail fast when the payment core is missing required configuration."""
        for attr, name in (
            ("stripe_secret_key", "STRIPE_SECRET_KEY"),
            ("stripe_webhook_secret", "STRIPE_WEBHOOK_SECRET"),
            ("site_url", "SITE_URL"),
            ("owner_profile_id", "OWNER_PROFILE_ID"),
        ):
            if not str(getattr(self, attr) or "").strip():
                raise ConfigurationError(f"Missing {name}")

    def require_owner(self) -> str:
        owner = self.owner_profile_id.strip()
        if not owner:
            raise ConfigurationError("Missing OWNER_PROFILE_ID")
        return owner

    @property
    def site_base_url(self) -> str:
        return self.site_url.strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
