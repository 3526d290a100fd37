import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

ALLPAY_API_URL = "https://allpay.to/app/?show=getpayment&mode=api9"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    allpay_login: Optional[str] = None
    allpay_api_key: Optional[str] = None
    allpay_api_url: str = ALLPAY_API_URL
    currency: str = "ILS"
    lang: str = "AUTO"
    base_url: Optional[str] = None
    request_timeout: float = 15.0
    redirect_max_age_hours: float = 24.0
    trust_success_redirect: bool = True

    @property
    def has_credentials(self) -> bool:
        return bool(self.allpay_login and self.allpay_api_key)


def load_settings() -> Settings:
    return Settings(
        allpay_login=os.getenv("ALLPAY_API_LOGIN") or None,
        allpay_api_key=os.getenv("ALLPAY_API_KEY") or None,
        allpay_api_url=os.getenv("ALLPAY_API_URL") or ALLPAY_API_URL,
        currency=os.getenv("ALLPAY_CURRENCY") or "ILS",
        lang=os.getenv("ALLPAY_LANG") or "AUTO",
        base_url=(os.getenv("PUBLIC_BASE_URL") or "").rstrip("/") or None,
        request_timeout=float(os.getenv("ALLPAY_TIMEOUT") or 15),
        redirect_max_age_hours=float(os.getenv("REDIRECT_MAX_AGE_HOURS") or 24),
        trust_success_redirect=_env_flag("TRUST_SUCCESS_REDIRECT", True),
    )


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
