"""
Studio Back-Office — Dashboard API route.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import Caller, require_project_manager
from backoffice.database import get_db
from backoffice.schemas import money
from backoffice.services.dashboard import dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
async def get_stats(
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    """Aggregate figures for the staff dashboard."""
    stats = await dashboard_stats(db)
    budgets = stats["budgets"]
    return {
        **stats,
        "budgets": {**budgets, "total_value": money(budgets["total_value"]), "avg_ticket": money(budgets["avg_ticket"])},
        "monthly": [{**m, "value": money(m["value"])} for m in stats["monthly"]],
        "recent_projects": [
            {"id": p.id, "name": p.name, "client_name": p.client_name, "status": p.status, "budget": money(p.budget_value)}
            for p in stats["recent_projects"]
        ],
    }
