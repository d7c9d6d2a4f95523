# payments.py
"""Stripe payment intents for priced orders."""

import logging
from typing import Dict, Optional

import stripe
from fastapi import HTTPException
from pydantic import BaseModel

from tweeshirt.pricing import PriceBreakdown
from tweeshirt.settings import settings

logger = logging.getLogger(__name__)
stripe.api_key = settings.STRIPE_SECRET_KEY


class PaymentIntentOut(BaseModel):
    """What the frontend needs to initialize Stripe.js."""
    payment_intent_id: str
    client_secret: str
    amount: float
    currency: str


def create_payment_intent(
    price: PriceBreakdown,
    currency: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> PaymentIntentOut:
    """Creates a PaymentIntent for the order total (in the smallest currency unit)."""
    if not settings.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=500, detail="Stripe is not configured.")
    currency = currency or settings.CURRENCY
    amount_cents = price.total_cents
    if amount_cents <= 0:
        raise HTTPException(status_code=400, detail="Invalid amount")

    try:
        intent = stripe.PaymentIntent.create(
            amount=amount_cents,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata=metadata or {},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe PaymentIntent create failed: {e}")
        raise HTTPException(
            status_code=502,
            detail=f"Payment Processor Error: {e.user_message or 'Could not initiate payment.'}",
        )

    logger.info(f"Created PaymentIntent {intent.id} for {amount_cents} {currency}.")
    return PaymentIntentOut(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount=float(price.total),
        currency=currency,
    )
