"""
Studio Back-Office — Dashboard aggregates.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice import lifecycle
from backoffice.lifecycle import BudgetStatus, CLOSED_PROJECT_STATES, ProjectStatus
from backoffice.models.budget import Budget
from backoffice.models.client import Client
from backoffice.models.evaluation import Evaluation
from backoffice.models.project import Project
from backoffice.models.user import User

# Budgets the client said yes to, wherever they are now
WON_BUDGET_STATES = tuple(
    s.value for s in BudgetStatus
    if s not in (BudgetStatus.PENDING, BudgetStatus.SENT, BudgetStatus.REJECTED)
)
MONTHS = 6


def _month_keys(now, months: int = MONTHS) -> list[str]:
    year, month = now.year, now.month
    keys = []
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


async def dashboard_stats(db: AsyncSession) -> dict:
    """Counts and money totals across projects, budgets, clients and team."""
    # Projects
    rows = await db.execute(select(Project.status, func.count(Project.id)).group_by(Project.status))
    project_counts = {status: count for status, count in rows.all()}
    closed = {s.value for s in CLOSED_PROJECT_STATES}
    waiting = ProjectStatus.WAITING_PAYMENT.value

    # Budgets
    rows = await db.execute(select(Budget.status, func.count(Budget.id)).group_by(Budget.status))
    budget_counts = {status: count for status, count in rows.all()}
    won = (await db.execute(
        select(func.count(Budget.id), func.sum(Budget.final_value))
        .where(Budget.status.in_(WON_BUDGET_STATES))
    )).one()
    won_count, won_value = won[0] or 0, lifecycle.to_money(won[1] or 0)

    # Team: each member's average received rating, members without ratings count as 0
    rows = await db.execute(
        select(User.id, func.avg(Evaluation.rating))
        .outerjoin(Evaluation, and_(
            Evaluation.target_id == User.id, Evaluation.kind.in_(("team", "member")),
        ))
        .where(User.role == "TEAM_MEMBER")
        .group_by(User.id)
    )
    member_ratings = [float(avg or 0) for _, avg in rows.all()]

    # Last six months of new projects
    now = lifecycle.utcnow()
    months = _month_keys(now)
    since = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0) - timedelta(days=31 * (MONTHS - 1))
    rows = await db.execute(
        select(Project.created_at, Project.budget_value).where(Project.created_at >= since)
    )
    monthly = {key: {"month": key, "projects": 0, "value": Decimal("0")} for key in months}
    for created_at, value in rows.all():
        key = f"{created_at.year:04d}-{created_at.month:02d}"
        if key in monthly:
            monthly[key]["projects"] += 1
            monthly[key]["value"] += value or Decimal("0")

    recent = (await db.execute(
        select(Project).order_by(Project.created_at.desc()).limit(5)
    )).scalars().all()

    client_total = (await db.execute(select(func.count(Client.id)))).scalar() or 0

    return {
        "projects": {
            "total": sum(project_counts.values()),
            "active": sum(n for s, n in project_counts.items() if s not in closed and s != waiting),
            "completed": sum(n for s, n in project_counts.items() if s in closed),
            "pending": project_counts.get(waiting, 0),
            "by_status": project_counts,
        },
        "budgets": {
            "total": sum(budget_counts.values()),
            "accepted": won_count,
            "pending": budget_counts.get(BudgetStatus.PENDING.value, 0) + budget_counts.get(BudgetStatus.SENT.value, 0),
            "rejected": budget_counts.get(BudgetStatus.REJECTED.value, 0),
            "total_value": won_value,
            "avg_ticket": lifecycle.to_money(won_value / won_count) if won_count else Decimal("0.00"),
        },
        "clients": {"total": client_total},
        "team": {
            "total": len(member_ratings),
            "avg_rating": round(sum(member_ratings) / len(member_ratings), 1) if member_ratings else 0,
        },
        "monthly": list(monthly.values()),
        "recent_projects": list(recent),
    }
