import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_CATALOG_FILE = str(PACKAGE_DIR / "data" / "catalog.json")

# signs the mock gateway's webhooks; never used for a real gateway
MOCK_WEBHOOK_SECRET = "supersecret"


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


# ----------------------------
# Config & Constants
# ----------------------------
@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./shakara.db"

    # 'static' | 'sanity'
    catalog_backend: str = "static"
    catalog_file: str = DEFAULT_CATALOG_FILE
    sanity_project_id: str = ""
    sanity_dataset: str = "production"
    sanity_api_version: str = "2023-05-03"
    sanity_token: Optional[str] = None

    # 'mock' | 'flutterwave'
    gateway: str = "mock"
    flw_base_url: str = "https://api.flutterwave.com/v3"
    flw_secret_key: str = ""
    flw_public_key: str = ""
    # shared secret for the `verif-hash` webhook header; empty rejects
    # every webhook
    webhook_secret: str = ""
    gateway_timeout: float = 5.0

    mock_webhook_url: str = "http://localhost:8000/api/checkout/webhook"
    mock_gateway_url: str = "http://localhost:8000/mockpay/v3"
    success_url: str = "http://localhost:3000/success"

    reservation_ttl_seconds: int = 10 * 60
    currency: str = "NGN"
    app_env: str = "development"
    log_level: str = "INFO"

    def __post_init__(self):
        if self.gateway == "mock" and not self.webhook_secret:
            object.__setattr__(self, "webhook_secret", MOCK_WEBHOOK_SECRET)

    @property
    def production(self) -> bool:
        return self.app_env == "production"

    @property
    def gateway_base_url(self) -> str:
        if self.gateway == "mock":
            return self.mock_gateway_url
        return self.flw_base_url

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ.get
        return cls(
            database_url=env("DATABASE_URL", cls.database_url),
            catalog_backend=env(
                "CATALOG_BACKEND", cls.catalog_backend
            ).lower(),
            catalog_file=env("CATALOG_FILE", cls.catalog_file),
            sanity_project_id=env("SANITY_PROJECT_ID", ""),
            sanity_dataset=env("SANITY_DATASET", cls.sanity_dataset),
            sanity_api_version=env(
                "SANITY_API_VERSION", cls.sanity_api_version
            ),
            sanity_token=env("SANITY_TOKEN") or None,
            gateway=env("GATEWAY", cls.gateway).lower(),
            flw_base_url=env("FLW_BASE_URL", cls.flw_base_url),
            flw_secret_key=env("FLW_SECRET_KEY", ""),
            flw_public_key=env("FLW_PUBLIC_KEY", ""),
            webhook_secret=env("FLW_WEBHOOK_HASH", ""),
            gateway_timeout=_env_float("GATEWAY_TIMEOUT", cls.gateway_timeout),
            mock_webhook_url=env("MOCK_WEBHOOK_URL", cls.mock_webhook_url),
            mock_gateway_url=env("MOCK_GATEWAY_URL", cls.mock_gateway_url),
            success_url=env("SUCCESS_URL", cls.success_url),
            reservation_ttl_seconds=_env_int(
                "RESERVATION_TTL_SECONDS", cls.reservation_ttl_seconds
            ),
            currency=env("CURRENCY", cls.currency).upper(),
            app_env=env("APP_ENV", cls.app_env).lower(),
            log_level=env("LOG_LEVEL", cls.log_level).upper(),
        )
