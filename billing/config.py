import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent

REQUIRED = ("DATABASE_URL", "JWT_SECRET", "MOMO_ACCESS_KEY", "MOMO_SECRET_KEY")


class Settings(BaseModel):
    """Everything the service reads from its environment, loaded once at startup."""

    model_config = ConfigDict(frozen=True)

    database_url: str
    jwt_secret: str

    momo_partner_code: str = "MOMO"
    momo_access_key: str
    momo_secret_key: str
    momo_api_url: str = "https://test-payment.momo.vn/v2/gateway/api/create"
    momo_redirect_url: str = "http://localhost:5173/payment/callback"
    momo_ipn_url: str = "http://localhost:8000/payments/momo/callback"
    momo_partner_name: str = "Media Billing"
    momo_store_id: str = "MediaBillingStore"
    momo_lang: str = "vi"

    # seconds
    gateway_timeout: float = 10.0

    environment: str = "development"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        # Force-load .env (reload-safe)
        load_dotenv(dotenv_path=BASE_DIR / ".env")

        missing = [name for name in REQUIRED if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"{', '.join(missing)} not set. Check your .env file.")

        values = {
            "database_url": os.environ["DATABASE_URL"],
            "jwt_secret": os.environ["JWT_SECRET"],
            "momo_access_key": os.environ["MOMO_ACCESS_KEY"],
            "momo_secret_key": os.environ["MOMO_SECRET_KEY"],
        }
        optional = {
            "momo_partner_code": "MOMO_PARTNER_CODE",
            "momo_api_url": "MOMO_API_URL",
            "momo_redirect_url": "MOMO_REDIRECT_URL",
            "momo_ipn_url": "MOMO_IPN_URL",
            "momo_partner_name": "MOMO_PARTNER_NAME",
            "momo_store_id": "MOMO_STORE_ID",
            "momo_lang": "MOMO_LANG",
            "gateway_timeout": "MOMO_TIMEOUT",
            "environment": "ENVIRONMENT",
            "log_level": "LOG_LEVEL",
        }
        for field, env_name in optional.items():
            value = os.getenv(env_name)
            if value:
                values[field] = value

        return cls(**values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
