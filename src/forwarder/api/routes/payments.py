"""Payment session endpoints."""

import logging
from decimal import Decimal

import pydantic
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from forwarder.api.callbacks import normalize_callback_uri
from forwarder.errors import InvalidAmountError, MalformedRequestError, NotJSONError
from forwarder.services.sessions import PaymentProcessor, payment_uri
from forwarder.units import lamports_to_sol, sol_to_lamports

logger = logging.getLogger(__name__)

router = APIRouter()


class PaymentRequest(BaseModel):
    """Body of a payment session request."""

    amount: Decimal = Field(..., description="Desired amount in SOL")
    callback_uri: str = Field(..., min_length=1, max_length=2048, description="Notification URI")

    @field_validator("amount", mode="before")
    @classmethod
    def reject_booleans(cls, v):
        if isinstance(v, bool):
            raise ValueError("Amount must be a number")
        return v


class PaymentResponse(BaseModel):
    """Response for a newly opened payment session."""

    success: bool = True
    id: str
    amount: Decimal
    address: str
    qr_payload: str
    expires: int


def get_processor(request: Request) -> PaymentProcessor:
    return request.app.state.processor


async def parse_payment_request(request: Request) -> PaymentRequest:
    """Parse the request body, mapping failures to forwarder errors."""
    content_type = request.headers.get("content-type", "")
    if content_type.split(";", 1)[0].strip().lower() != "application/json":
        raise NotJSONError(f"Unsupported content type {content_type!r}")

    try:
        body = await request.json()
    except ValueError as e:
        raise MalformedRequestError(f"Body is not valid JSON: {e}") from e

    try:
        return PaymentRequest.model_validate(body)
    except pydantic.ValidationError as e:
        raise MalformedRequestError(f"Body failed validation: {e.error_count()} error(s)") from e


@router.post("/payment/create", response_model=PaymentResponse)
async def create_payment(
    request: Request,
    processor: PaymentProcessor = Depends(get_processor),
):
    """Open a payment session.

    Mints a disposable address and starts watching it in the background.
    """
    payload = await parse_payment_request(request)
    settings = processor.settings

    try:
        amount = sol_to_lamports(payload.amount)
    except ValueError as e:
        raise InvalidAmountError(str(e)) from e
    processor.validate_amount(amount)

    callback_uri = await normalize_callback_uri(
        payload.callback_uri,
        allow_local=settings.allow_local_callbacks,
        dns_check=settings.callback_dns_check,
    )

    session = await processor.start(amount, callback_uri)

    return PaymentResponse(
        id=session.id,
        amount=lamports_to_sol(session.desired_amount),
        address=session.address,
        qr_payload=payment_uri(session.address, session.desired_amount),
        expires=int(session.expires_at.timestamp()),
    )


@router.get("/payment/{session_id}")
async def get_payment(session_id: str, processor: PaymentProcessor = Depends(get_processor)):
    """Current status of a payment session."""
    session = processor.get(session_id)
    return {"success": True, **session.to_dict()}
