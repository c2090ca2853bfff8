"""
Studio Back-Office — Contract API routes.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import Caller, require_budget_manager
from backoffice.database import get_db
from backoffice.schemas.contract import ContractIssueRequest, contract_to_response, public_contract_view
from backoffice.services import contracts as contract_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/budgets/{budget_id}/contract", tags=["contracts"])
public_router = APIRouter(prefix="/contracts", tags=["contracts"])


# ═══════════════════════════════════════════════════════
#  Staff side (per budget)
# ═══════════════════════════════════════════════════════

@router.post("", status_code=201)
async def issue_contract(
    budget_id: str,
    req: ContractIssueRequest | None = None,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    """Create or re-issue the budget's contract and email the signing link."""
    req = req or ContractIssueRequest()
    contract, sign_url, email_sent = await contract_service.issue_contract(
        db, budget_id, caller,
        final_value=req.final_value,
        timeline=req.timeline,
        details=req.details,
        send_by_email=req.send_by_email,
    )
    return {
        "success": True,
        "contract": contract_to_response(contract),
        "sign_url": sign_url,
        "email_sent": email_sent,
    }


@router.get("")
async def get_budget_contract(
    budget_id: str,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    contract = await contract_service.get_contract_for_budget(db, budget_id)
    return contract_to_response(contract)


@router.post("/confirm")
async def confirm_contract(
    budget_id: str,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    contract = await contract_service.confirm_contract(db, budget_id, caller)
    return {"success": True, "contract": contract_to_response(contract)}


# ═══════════════════════════════════════════════════════
#  Client side (public signing page)
# ═══════════════════════════════════════════════════════

@public_router.get("/{contract_id}")
async def view_contract(contract_id: str, db: AsyncSession = Depends(get_db)):
    contract = await contract_service.get_contract(db, contract_id)
    return public_contract_view(contract)


@public_router.post("/{contract_id}/sign")
async def upload_signed_contract(
    contract_id: str,
    file: UploadFile | None = File(None),
    signature_name: str | None = Form(None),
    db: AsyncSession = Depends(get_db),
):
    """Upload the client-signed PDF. A contract can only be signed once."""
    data = await file.read() if file is not None else None
    contract = await contract_service.upload_signed_contract(
        db, contract_id,
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        data=data,
        signature_name=signature_name,
    )
    return {
        "success": True,
        "message": "Contrato enviado com sucesso",
        "document_url": contract.document_url,
        "status": contract.status,
    }
