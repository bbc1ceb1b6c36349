import json
from functools import lru_cache

from fastapi import HTTPException, Request, status

from src.infrastructure.config import AppSettings, ChillPayConfig
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.gateway.chillpay import ChillPayClient
from src.infrastructure.notifications.email_notifier import (
    OutboxEmailNotifier,
    PaymentNotifier,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache
def get_gateway_config() -> ChillPayConfig:
    return ChillPayConfig.from_env()


@lru_cache
def get_app_settings() -> AppSettings:
    return AppSettings.from_env()


@lru_cache
def get_gateway() -> ChillPayClient:
    return ChillPayClient(get_gateway_config())


@lru_cache
def get_notifier() -> PaymentNotifier:
    return OutboxEmailNotifier()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


async def notification_fields(request: Request) -> dict:
    """
    Read a gateway notification body, form-encoded or JSON, as a flat
    dict of strings. Malformed bodies are rejected with 400.
    """
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        raw = await request.body()
        try:
            body = json.loads(raw or b"{}")
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Body is not valid JSON",
            ) from exc
        if not isinstance(body, dict):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Body must be a JSON object",
            )
        return {str(key): "" if value is None else str(value) for key, value in body.items()}

    form = await request.form()
    return {
        key: value if isinstance(value, str) else getattr(value, "filename", "") or ""
        for key, value in form.items()
    }
