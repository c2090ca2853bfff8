"""
Studio Back-Office — Stripe adapter.

Payment links and checkout-session lookups go through the official ``stripe``
SDK (blocking calls pushed to a worker thread); webhook payloads are verified
with ``stripe.Webhook.construct_event``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import stripe

from backoffice.config import settings
from backoffice.errors import AuthorizationError, ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_VERIFIED = "checkout.session.verified"

# Card with installments; PIX needs activation on the Stripe dashboard first
PAYMENT_METHOD_TYPES = ["card"]


@dataclass(frozen=True)
class PaymentLink:
    id: str
    url: str


@dataclass(frozen=True)
class CheckoutCompleted:
    """What settlement needs from a completed checkout."""
    event_id: str
    budget_id: Optional[str]
    payment_type: Optional[str]
    payment_link_id: Optional[str]
    reference: Optional[str]
    project_id: Optional[str] = None


@dataclass(frozen=True)
class CheckoutSession:
    """A checkout session fetched back from Stripe after the redirect."""
    id: str
    paid: bool
    payment_link_id: Optional[str]
    reference: Optional[str]
    metadata: dict = field(default_factory=dict)


def _client() -> stripe.StripeClient:
    if not settings.stripe_secret_key:
        raise ExternalServiceError("Stripe is not configured (STRIPE_SECRET_KEY)")
    return stripe.StripeClient(settings.stripe_secret_key)


def thank_you_url() -> str:
    """Where Stripe sends the client after paying; Stripe fills the session id."""
    return f"{settings.public_app_url}/obrigado/pagamento?session_id={{CHECKOUT_SESSION_ID}}"


def _create_link_sync(amount_cents: int, description: str, metadata: dict) -> PaymentLink:
    client = _client()
    metadata = {k: str(v) for k, v in metadata.items() if v is not None}
    metadata["description"] = description[:500]

    product = client.products.create(params={"name": description[:250]})
    price = client.prices.create(params={
        "product": product.id,
        "unit_amount": amount_cents,
        "currency": settings.stripe_currency,
    })
    link = client.payment_links.create(params={
        "line_items": [{"price": price.id, "quantity": 1}],
        "payment_method_types": PAYMENT_METHOD_TYPES,
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
        "after_completion": {
            "type": "redirect",
            "redirect": {"url": thank_you_url()},
        },
    })
    return PaymentLink(id=link.id, url=link.url)


async def create_payment_link(amount_cents: int, description: str, metadata: dict) -> PaymentLink:
    """Create product → price → payment link and return the hosted page."""
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    try:
        link = await asyncio.to_thread(_create_link_sync, amount_cents, description, metadata)
    except stripe.StripeError as e:
        logger.error(f"Stripe payment link failed: {e.user_message or e}")
        raise ExternalServiceError(f"Payment gateway error: {e.user_message or e}") from e
    logger.info(f"💳 Payment link {link.id} created: {description} ({amount_cents} cents)")
    return link


def _retrieve_session_sync(session_id: str) -> CheckoutSession:
    session = _client().checkout.sessions.retrieve(session_id)
    return CheckoutSession(
        id=session.id,
        paid=session.payment_status == "paid",
        payment_link_id=session.payment_link,
        reference=session.payment_intent or session.id,
        metadata=dict(session.metadata or {}),
    )


async def retrieve_checkout_session(session_id: str) -> CheckoutSession:
    try:
        return await asyncio.to_thread(_retrieve_session_sync, session_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe session {session_id} lookup failed: {e.user_message or e}")
        raise ExternalServiceError(f"Payment gateway error: {e.user_message or e}") from e


def construct_event(payload: bytes, signature_header: str | None) -> dict:
    """Verify the Stripe-Signature header and decode the event."""
    secret = settings.stripe_webhook_secret
    if not secret:
        raise ExternalServiceError("Stripe webhook secret is not configured")
    if not signature_header:
        raise AuthorizationError("Missing Stripe-Signature header")

    try:
        event = stripe.Webhook.construct_event(
            payload, signature_header, secret, tolerance=settings.stripe_webhook_tolerance,
        )
    except stripe.SignatureVerificationError as e:
        raise AuthorizationError(f"Invalid Stripe signature: {e.user_message or e}") from None
    except ValueError:
        raise ValidationError("Malformed webhook payload") from None

    # stripe.Event is a dict subclass
    if "id" not in event or "type" not in event:
        raise ValidationError("Malformed webhook payload")
    return event


def checkout_reference(event: dict) -> CheckoutCompleted:
    """Pull budget/payment identifiers out of a checkout.session.completed event."""
    session = (event.get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}
    if not metadata.get("budget_id"):
        metadata = (session.get("payment_intent_data") or {}).get("metadata") or {}
    return CheckoutCompleted(
        event_id=event["id"],
        budget_id=metadata.get("budget_id"),
        payment_type=metadata.get("type"),
        payment_link_id=session.get("payment_link"),
        reference=session.get("payment_intent") or session.get("id"),
        project_id=metadata.get("project_id"),
    )
