"""
Studio Back-Office — Payment API routes: links, gateway webhook, reconciliation.
"""

import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import Caller, require_admin, require_budget_manager, require_project_manager
from backoffice.database import get_db
from backoffice.schemas import money
from backoffice.schemas.contract import PaymentLinkRequest, PaymentVerifyRequest, payment_to_response
from backoffice.services import payment_gateway, reconciler, settlement

logger = logging.getLogger(__name__)
router = APIRouter(tags=["payments"])


def _link_response(result: dict) -> dict:
    return {
        "success": result["success"],
        "message": result["message"],
        "payment_link": result["payment_link"],
        "email_sent": result["email_sent"],
        "payment": payment_to_response(result["payment"]),
    }


# ═══════════════════════════════════════════════════════
#  Payment links
# ═══════════════════════════════════════════════════════

@router.post("/budgets/{budget_id}/down-payment")
async def create_down_payment(
    budget_id: str,
    req: PaymentLinkRequest | None = None,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    """Create (or re-create) the 25% down payment link."""
    req = req or PaymentLinkRequest()
    result = await settlement.create_down_payment_link(db, budget_id, caller, send_by_email=req.send_by_email)
    return _link_response(result)


@router.post("/projects/{project_id}/final-payment")
async def create_final_payment(
    project_id: str,
    req: PaymentLinkRequest | None = None,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    """Create the 75% final payment link and move the project to waiting_final_payment."""
    req = req or PaymentLinkRequest()
    result = await settlement.create_final_payment_link(db, project_id, caller, send_by_email=req.send_by_email)
    return _link_response(result)


@router.get("/budgets/{budget_id}/payments")
async def list_payments(
    budget_id: str,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    payments = await settlement.list_payments(db, budget_id)
    return {"payments": [payment_to_response(p) for p in payments], "total": len(payments)}


# ═══════════════════════════════════════════════════════
#  Gateway webhook
# ═══════════════════════════════════════════════════════

@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
):
    """
    Stripe calls this for every subscribed event. Only completed checkouts
    change state; everything else is acknowledged so Stripe stops retrying.
    """
    payload = await request.body()
    event = payment_gateway.construct_event(payload, stripe_signature)

    if event["type"] != payment_gateway.CHECKOUT_COMPLETED:
        logger.info(f"Stripe event {event['id']} ({event['type']}) ignored")
        return {"received": True, "status": "ignored"}

    checkout = payment_gateway.checkout_reference(event)
    result = await settlement.settle_checkout(db, checkout, event["type"])
    return {"received": True, **result}


@router.post("/payments/verify")
async def verify_payment(req: PaymentVerifyRequest, db: AsyncSession = Depends(get_db)):
    """
    Public: the thank-you page calls this after Stripe redirects the client
    back. Settles the payment if Stripe says the session is paid and the
    webhook has not arrived yet; re-applies settlement when it already is.
    """
    result = await settlement.verify_payment(db, session_id=req.session_id, budget_id=req.budget_id)
    budget, project = result["budget"], result["project"]
    return {
        "success": result["success"],
        "effects": result["effects"],
        "payment": payment_to_response(result["payment"]),
        "budget": {
            "id": budget.id,
            "client_name": budget.client_name,
            "project_type": budget.project_type,
            "final_value": money(budget.final_value),
            "status": budget.status,
        },
        "project": {
            "id": project.id,
            "name": project.name,
            "client_name": project.client_name,
            "status": project.status,
        } if project else None,
    }


# ═══════════════════════════════════════════════════════
#  Reconciliation
# ═══════════════════════════════════════════════════════

@router.post("/reconcile", tags=["system"])
async def run_reconcile(
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Repair settlement drift now instead of waiting for the periodic sweep."""
    corrections = await reconciler.reconcile(db)
    logger.info(f"🩹 Manual reconciliation by {caller.actor}: {len(corrections)} correction(s)")
    return {"corrections": [c.to_dict() for c in corrections], "total": len(corrections)}
