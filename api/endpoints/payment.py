"""Payment initiation and hosted-checkout callback endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import PayerRequest, PaymentInitResponse
from config.settings import settings
from core.dependencies import attach_session_cookie, get_payment_gateway, get_session_id
from services.payment_gateway import PaymentGatewayClient


router = APIRouter()

limiter = Limiter(key_func=get_remote_address)


@router.post("/pay", response_model=PaymentInitResponse)
@limiter.limit("5/minute")
async def initiate_payment(
    request: Request,
    payload: PayerRequest,
    gateway: PaymentGatewayClient = Depends(get_payment_gateway)
):
    """Start a premium checkout and return the gateway's authorization URL"""
    target = gateway.initiate_charge(settings.PREMIUM_PRICE_KES, payload.email)
    return PaymentInitResponse(
        authorization_url=target.url,
        reference=target.reference,
        amount=settings.PREMIUM_PRICE_KES
    )


@router.get("/paystack/callback")
async def paystack_callback(
    reference: Optional[str] = None,
    trxref: Optional[str] = None,
    session_id: str = Depends(get_session_id),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway)
):
    """
    Gateway return URL

    Verifies the reference and always redirects to the app, with
    payment=success, or payment=failed plus an alert message.
    """
    result = gateway.handle_return_from_gateway(reference or trxref)
    response = RedirectResponse(url=result.redirect_url, status_code=302)
    attach_session_cookie(response, session_id)
    return response
