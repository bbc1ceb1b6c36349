import json
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import ValidationError
from sqlalchemy.orm import Session

from src.api.dependencies import (
    base_url,
    client_ip,
    get_app_settings,
    get_db,
    get_gateway,
    get_gateway_config,
    get_notifier,
    notification_fields,
)
from src.api.schemas.schemas import (
    AdminStatusOverrideRequest,
    BookingResponse,
    CheckoutBookingRequest,
    CheckoutBookingResponse,
    ExternalBookingRequest,
    ExternalBookingResponse,
    PaymentInitiationRequest,
    PaymentInitiationResponse,
    ReconcileResponse,
)
from src.application.admin_service import AdminService
from src.application.booking_service import BookingService
from src.application.external_intake_service import (
    ExternalBooking,
    ExternalIntakeService,
)
from src.application.reconciliation_service import (
    CONFIRMATION_ERROR,
    PENDING_CONFIRMATION_MESSAGE,
    ReconciliationService,
)
from src.domain.booking_items import SeatLineItem, normalize_seats
from src.domain.exceptions import (
    BookingNotFoundError,
    BookingPipelineError,
    ChecksumMismatchError,
    GatewayConfigurationError,
    GatewayError,
    InvalidStateTransitionError,
    PayloadValidationError,
    TicketIssuanceError,
)
from src.domain.gateway_outcome import pick
from src.infrastructure.config import AppSettings, ChillPayConfig
from src.infrastructure.gateway.chillpay import ChillPayClient
from src.infrastructure.notifications.email_notifier import PaymentNotifier
from src.infrastructure.repositories.ticket_repository import TicketRepository


router = APIRouter()
logger = logging.getLogger(__name__)

CONFIRMATION_PATH = "/checkout/confirmation"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def _gateway_http_error(exc: GatewayError) -> HTTPException:
    return HTTPException(
        status_code=exc.http_status,
        detail={
            "error": "Failed to initiate payment",
            "details": exc.message,
            "code": exc.code,
            "status": exc.status,
            "retryable": exc.retryable,
        },
    )


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def _booking_response(db: Session, booking) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        status=booking.payment_status.value,
        payment_order_no=booking.payment_order_no,
        total_amount=str(booking.total_amount),
        ticket_count=TicketRepository(db).count_for_booking(booking.id),
    )


@router.get("/health")
def health():
    return {"message": "Booking payment reconciliation service is running"}


# -----------------------------
# Direct checkout
# -----------------------------
@router.post("/api/bookings", response_model=CheckoutBookingResponse)
def create_checkout_booking(
    request: CheckoutBookingRequest,
    db: Session = Depends(get_db),
):
    service = BookingService(db)
    items = [
        SeatLineItem(
            seat_type=ticket.seat_type,
            quantity=ticket.quantity,
            price_paid=ticket.price_paid,
        )
        for ticket in request.tickets
    ]

    try:
        booking = service.create_checkout_booking(
            event_id=request.event_id,
            full_name=request.contact_info.full_name,
            email=request.contact_info.email,
            phone=request.contact_info.phone,
            items=items,
            total_amount=request.total_cost,
        )
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except PayloadValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    return CheckoutBookingResponse(
        success=True,
        booking_id=booking.id,
        customer_id=booking.customer_id,
        message="Booking created successfully",
    )


@router.get("/api/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    try:
        booking = BookingService(db).get_booking(booking_id)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return _booking_response(db, booking)


@router.post("/api/checkout/chillpay", response_model=PaymentInitiationResponse)
def initiate_chillpay_payment(
    payload: PaymentInitiationRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: ChillPayClient = Depends(get_gateway),
    settings: AppSettings = Depends(get_app_settings),
):
    service = BookingService(db)

    try:
        result = service.initiate_payment(
            payload.booking_id,
            gateway=gateway,
            settings=settings,
            base_url=base_url(request),
            client_ip=client_ip(request),
            email=payload.email,
            phone=payload.phone,
            description=payload.event_title,
            expected_amount=payload.amount,
        )
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except PayloadValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except GatewayConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except GatewayError as exc:
        raise _gateway_http_error(exc) from exc

    return PaymentInitiationResponse(payment_url=result.payment_url)


# -----------------------------
# Browser redirect (advisory)
# -----------------------------
def _confirmation_url(
    base: str,
    booking_id: str | None,
    outcome_status: str,
    message: str | None,
) -> str:
    params = {
        "paymentMethod": "credit-card",
        "bookingId": booking_id or "",
        "status": outcome_status,
    }
    if message:
        params["message"] = message
    return f"{base}{CONFIRMATION_PATH}?{urlencode(params)}"


@router.get("/api/checkout/chillpay/callback")
def chillpay_redirect(
    request: Request,
    db: Session = Depends(get_db),
    notifier: PaymentNotifier = Depends(get_notifier),
    gateway_config: ChillPayConfig = Depends(get_gateway_config),
    settings: AppSettings = Depends(get_app_settings),
):
    params = dict(request.query_params)
    base = settings.public_base_url or base_url(request)

    try:
        service = ReconciliationService(db, notifier, gateway_config)
        outcome = service.handle_redirect(
            params,
            write_status=settings.redirect_writes_status,
        )
        target = _confirmation_url(base, outcome.booking_id, outcome.status, outcome.message)
    except Exception:
        # The browser always lands on the confirmation page.
        logger.exception(
            "Redirect handling failed. booking_id=%s order_no=%s",
            params.get("bookingId"),
            params.get("OrderNo"),
        )
        db.rollback()
        target = _confirmation_url(
            base,
            params.get("bookingId"),
            CONFIRMATION_ERROR,
            PENDING_CONFIRMATION_MESSAGE,
        )

    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)



@router.post("/api/checkout/chillpay/callback")
def chillpay_cancel_callback(
    fields: dict = Depends(notification_fields),
    db: Session = Depends(get_db),
    notifier: PaymentNotifier = Depends(get_notifier),
    gateway_config: ChillPayConfig = Depends(get_gateway_config),
):
    service = ReconciliationService(db, notifier, gateway_config)
    try:
        result = service.handle_cancel_callback(fields)
    except PayloadValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    return {
        "status": "success" if result.booking else "ignored",
        "bookingId": result.booking.id if result.booking else None,
        "paymentStatus": result.status.value if result.status else None,
        "changed": result.changed,
    }


# -----------------------------
# Webhook (authoritative)
# -----------------------------
@router.post("/api/checkout/chillpay/webhook")
def chillpay_webhook(
    fields: dict = Depends(notification_fields),
    db: Session = Depends(get_db),
    notifier: PaymentNotifier = Depends(get_notifier),
    gateway_config: ChillPayConfig = Depends(get_gateway_config),
):
    order_no = pick(fields, "OrderNo")
    service = ReconciliationService(db, notifier, gateway_config)

    try:
        result = service.handle_webhook(fields)
    except (PayloadValidationError, ChecksumMismatchError) as exc:
        logger.error("Rejected webhook. order_no=%s error=%s", order_no, exc)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "error", "message": str(exc)},
        )
    except Exception:
        # Non-200 makes the gateway redeliver.
        logger.exception("Webhook processing failed. order_no=%s", order_no)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error", "message": "Internal server error"},
        )

    if result.booking is None:
        return {"status": "ignored", "message": "Unknown order number", "orderNo": order_no}

    return {
        "status": "success",
        "bookingId": result.booking.id,
        "paymentStatus": result.status.value,
        "changed": result.changed,
        "ticketsIssued": result.tickets_issued,
    }


# -----------------------------
# Bulk external intake
# -----------------------------
async def intake_payload(request: Request):
    raw = await request.body()
    try:
        return json.loads(raw or b"{}")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Body is not valid JSON",
            headers=CORS_HEADERS,
        ) from exc


def _parse_external_booking(payload) -> ExternalBooking:
    if not isinstance(payload, dict):
        raise PayloadValidationError("Body must be a JSON object")
    try:
        parsed = ExternalBookingRequest.model_validate(payload)
    except ValidationError as exc:
        raise PayloadValidationError(_validation_message(exc)) from exc

    return ExternalBooking(
        reference=parsed.booking_id,
        amount=parsed.amount,
        customer_name=parsed.customer_name,
        email=parsed.email,
        phone=parsed.phone,
        items=normalize_seats(parsed.seats, parsed.amount),
        event_id=parsed.event_id,
        event_title=parsed.event_title,
        event_date=parsed.event_date,
        venue_id=parsed.venue_id,
        venue_name=parsed.venue_name,
    )


def _intake_error(exc: BookingPipelineError) -> JSONResponse:
    if isinstance(exc, GatewayError):
        status_code = exc.http_status
        content = {
            "error": "Failed to initiate payment",
            "details": exc.message,
            "code": exc.code,
            "status": exc.status,
            "retryable": exc.retryable,
        }
    elif isinstance(exc, PayloadValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
        content = {"error": str(exc)}
    elif isinstance(exc, BookingNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
        content = {"error": str(exc)}
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        content = {"error": str(exc)}
    return JSONResponse(status_code=status_code, content=content, headers=CORS_HEADERS)


def _receive_external_booking(
    payload,
    request: Request,
    db: Session,
    gateway: ChillPayClient,
    settings: AppSettings,
):
    data = _parse_external_booking(payload)
    return ExternalIntakeService(db).receive(
        data,
        gateway=gateway,
        settings=settings,
        base_url=base_url(request),
        client_ip=client_ip(request),
    )


@router.options("/api/external-bookings/receive")
def external_booking_preflight():
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


@router.get("/api/external-bookings/receive")
def receive_external_booking_redirect(
    request: Request,
    db: Session = Depends(get_db),
    gateway: ChillPayClient = Depends(get_gateway),
    settings: AppSettings = Depends(get_app_settings),
):
    try:
        result = _receive_external_booking(
            dict(request.query_params), request, db, gateway, settings
        )
    except BookingPipelineError as exc:
        logger.error("External booking rejected. error=%s", exc)
        return _intake_error(exc)

    return RedirectResponse(
        url=result.payment_url,
        status_code=status.HTTP_302_FOUND,
        headers=CORS_HEADERS,
    )


@router.post("/api/external-bookings/receive")
def receive_external_booking(
    request: Request,
    payload=Depends(intake_payload),
    db: Session = Depends(get_db),
    gateway: ChillPayClient = Depends(get_gateway),
    settings: AppSettings = Depends(get_app_settings),
):
    try:
        result = _receive_external_booking(payload, request, db, gateway, settings)
    except BookingPipelineError as exc:
        logger.error("External booking rejected. error=%s", exc)
        return _intake_error(exc)

    body = ExternalBookingResponse(
        internal_id=result.internal_id,
        payment_url=result.payment_url,
    )
    return JSONResponse(content=body.model_dump(by_alias=True), headers=CORS_HEADERS)


# -----------------------------
# Admin
# -----------------------------
@router.post("/admin/bookings/{booking_id}/status", response_model=BookingResponse)
def override_booking_status(
    booking_id: str,
    request: AdminStatusOverrideRequest,
    db: Session = Depends(get_db),
):
    try:
        booking = BookingService(db).override_status(booking_id, request.status)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return _booking_response(db, booking)


@router.post("/admin/bookings/{booking_id}/reconcile", response_model=ReconcileResponse)
def reconcile_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    notifier: PaymentNotifier = Depends(get_notifier),
    gateway_config: ChillPayConfig = Depends(get_gateway_config),
):
    service = ReconciliationService(db, notifier, gateway_config)
    try:
        result = service.reconcile_completed(booking_id)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (InvalidStateTransitionError, TicketIssuanceError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    return ReconcileResponse(
        booking_id=result.booking.id,
        status=result.status.value,
        tickets_issued=result.tickets_issued,
        ticket_count=TicketRepository(db).count_for_booking(result.booking.id),
    )


@router.delete("/admin/events/{event_id}")
def delete_event(event_id: str, db: Session = Depends(get_db)):
    try:
        return AdminService(db).cancel_and_delete_event(event_id)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
