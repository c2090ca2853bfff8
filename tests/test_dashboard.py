"""
Tests for the staff dashboard aggregates.
"""

from decimal import Decimal

from backoffice.lifecycle import utcnow
from backoffice.models.client import Client
from backoffice.models.evaluation import Evaluation
from backoffice.models.project import Project


async def _seed(db_session, make_budget, users):
    for status, value in [
        ("pending", "10000.00"), ("sent", "10000.00"), ("rejected", "10000.00"),
        ("accepted", "10000.00"), ("down_payment_paid", "20000.00"),
    ]:
        await make_budget(status=status, final_value=Decimal(value))

    projects = [
        Project(name="Site", status="planning", client_name="Maria Souza", budget_value=Decimal("8000.00")),
        Project(name="Loja", status="completed", client_name="Loja Azul", budget_value=Decimal("12000.00")),
        Project(name="App", status="waiting_payment", client_name="Joao", budget_value=Decimal("5000.00")),
    ]
    db_session.add_all(projects)
    db_session.add(Client(name="Maria Souza"))
    await db_session.flush()
    db_session.add_all([
        Evaluation(kind="team", project_id=projects[1].id, evaluator_id=users["admin"].id,
                   target_id=users["manager"].id, rating=4),
        Evaluation(kind="member", project_id=projects[1].id, evaluator_id=users["manager"].id,
                   target_id=users["member"].id, rating=3),
        # Ratings of the project itself are not team ratings
        Evaluation(kind="project", project_id=projects[1].id, evaluator_id=users["admin"].id,
                   target_id=projects[1].id, rating=1),
    ])
    await db_session.commit()


class TestDashboardStats:
    async def test_aggregates(self, client, headers, db_session, make_budget, users):
        await _seed(db_session, make_budget, users)

        resp = await client.get("/api/v1/dashboard/stats", headers=headers["manager"])
        assert resp.status_code == 200
        data = resp.json()

        assert data["projects"]["total"] == 3
        assert data["projects"]["active"] == 1
        assert data["projects"]["completed"] == 1
        assert data["projects"]["pending"] == 1
        assert data["projects"]["by_status"]["planning"] == 1

        assert data["budgets"] == {
            "total": 5, "accepted": 2, "pending": 2, "rejected": 1,
            "total_value": 30000.0, "avg_ticket": 15000.0,
        }
        assert data["clients"] == {"total": 1}
        assert data["team"] == {"total": 2, "avg_rating": 3.5}

        assert len(data["monthly"]) == 6
        now = utcnow()
        current = data["monthly"][-1]
        assert current["month"] == f"{now.year:04d}-{now.month:02d}"
        assert current["projects"] == 3
        assert current["value"] == 25000.0
        assert all(m["projects"] == 0 for m in data["monthly"][:-1])

        assert {p["name"] for p in data["recent_projects"]} == {"Site", "Loja", "App"}

    async def test_empty_database(self, client, headers):
        data = (await client.get("/api/v1/dashboard/stats", headers=headers["admin"])).json()
        assert data["projects"]["total"] == 0
        assert data["budgets"]["avg_ticket"] == 0.0
        assert data["team"] == {"total": 2, "avg_rating": 0}
        assert data["recent_projects"] == []

    async def test_customer_forbidden(self, client, headers):
        assert (await client.get("/api/v1/dashboard/stats", headers=headers["customer"])).status_code == 403

    async def test_requires_login(self, client):
        assert (await client.get("/api/v1/dashboard/stats")).status_code == 401
