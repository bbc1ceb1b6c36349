# src/infrastructure/config.py

from dataclasses import dataclass
import os

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class ChillPayConfig:
    """Merchant credentials and fixed request constants for ChillPay."""

    merchant_code: str
    api_key: str
    md5_secret: str
    api_endpoint: str
    channel_code: str = "creditcard"
    currency: str = "764"
    lang_code: str = "EN"
    route_no: str = "1"
    timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "ChillPayConfig":
        return cls(
            merchant_code=os.getenv("CHILLPAY_MERCHANT_CODE", "").strip(),
            api_key=os.getenv("CHILLPAY_API_KEY", "").strip(),
            # Secrets pasted into .env files often carry a trailing newline.
            md5_secret=os.getenv("CHILLPAY_MD5_SECRET", "").strip(),
            api_endpoint=os.getenv("CHILLPAY_API_ENDPOINT", "").strip(),
            timeout_seconds=float(os.getenv("CHILLPAY_TIMEOUT_SECONDS", "15")),
        )

    def is_complete(self) -> bool:
        return all(
            (self.merchant_code, self.api_key, self.md5_secret, self.api_endpoint)
        )


REDIRECT_MODE_WRITE = "write"
REDIRECT_MODE_READ = "read"


@dataclass(frozen=True)
class AppSettings:
    public_base_url: str = ""
    redirect_status_mode: str = REDIRECT_MODE_READ
    fallback_phone_number: str = "0000000000"

    @classmethod
    def from_env(cls) -> "AppSettings":
        mode = os.getenv("REDIRECT_STATUS_MODE", REDIRECT_MODE_READ).strip().lower()
        if mode not in {REDIRECT_MODE_WRITE, REDIRECT_MODE_READ}:
            raise ValueError(
                f"REDIRECT_STATUS_MODE must be 'write' or 'read', got {mode!r}"
            )
        return cls(
            public_base_url=os.getenv("PUBLIC_BASE_URL", "").strip().rstrip("/"),
            redirect_status_mode=mode,
            fallback_phone_number=os.getenv(
                "CHILLPAY_FALLBACK_PHONE", "0000000000"
            ).strip(),
        )

    @property
    def redirect_writes_status(self) -> bool:
        return self.redirect_status_mode == REDIRECT_MODE_WRITE
