"""
Tests for evaluations — one per (kind, project, evaluator, target), 1–5 scores.
"""

import pytest

from backoffice.models.client import Client
from backoffice.models.project import Project, ProjectMember


@pytest.fixture
def make_project(db_session, users):
    async def _make(status="completed", created_by="manager", members=()) -> Project:
        customer = Client(name="Maria Souza", emails=[{"address": "maria@cliente.example.com", "primary": True}])
        db_session.add(customer)
        await db_session.flush()
        project = Project(
            name="Site institucional - Maria Souza",
            status=status,
            client_id=customer.id,
            client_name=customer.name,
            created_by_id=users[created_by].id,
        )
        project.members = [ProjectMember(user_id=users[key].id, role="Dev") for key in members]
        db_session.add(project)
        await db_session.commit()
        return project

    return _make


def _url(project):
    return f"/api/v1/projects/{project.id}/evaluations"


class TestProjectEvaluation:
    async def test_creator_evaluates_completed_project(self, client, headers, make_project):
        project = await make_project()
        resp = await client.post(_url(project), json={"kind": "project", "rating": 5}, headers=headers["manager"])
        assert resp.status_code == 201
        assert resp.json()["target_id"] == project.id

        again = await client.post(_url(project), json={"kind": "project", "rating": 4}, headers=headers["manager"])
        assert again.status_code == 409
        assert again.json()["detail"] == "You have already evaluated this"

    async def test_other_member_cannot(self, client, headers, make_project):
        project = await make_project()
        resp = await client.post(_url(project), json={"kind": "project", "rating": 5}, headers=headers["member"])
        assert resp.status_code == 403

    async def test_admin_can(self, client, headers, make_project):
        project = await make_project()
        resp = await client.post(_url(project), json={"kind": "project", "rating": 3}, headers=headers["admin"])
        assert resp.status_code == 201

    async def test_project_must_be_done(self, client, headers, make_project):
        project = await make_project(status="development_70")
        resp = await client.post(_url(project), json={"kind": "project", "rating": 5}, headers=headers["manager"])
        assert resp.status_code == 409


class TestDetailedEvaluations:
    async def test_client_evaluation_needs_all_scores(self, client, headers, make_project):
        project = await make_project()
        resp = await client.post(_url(project), json={"kind": "client", "rating": 4}, headers=headers["member"])
        assert resp.status_code == 400

        resp = await client.post(
            _url(project),
            json={"kind": "client", "rating": 4, "participation": 5, "quality": 3, "comment": " Ótima parceria "},
            headers=headers["member"],
        )
        assert resp.status_code == 201
        assert resp.json()["target_id"] == project.client_id
        assert resp.json()["comment"] == "Ótima parceria"

    async def test_member_must_belong_to_project(self, client, headers, users, make_project):
        project = await make_project(members=("member",))
        body = {"kind": "member", "rating": 5, "participation": 5, "quality": 5}

        ok = await client.post(_url(project), json={**body, "targetId": users["member"].id}, headers=headers["manager"])
        assert ok.status_code == 201

        outsider = await client.post(_url(project), json={**body, "targetId": users["admin"].id}, headers=headers["manager"])
        assert outsider.status_code == 400

    async def test_same_target_by_different_evaluators(self, client, headers, users, make_project):
        project = await make_project()
        body = {"kind": "team", "targetId": users["member"].id, "rating": 4}
        assert (await client.post(_url(project), json=body, headers=headers["manager"])).status_code == 201
        assert (await client.post(_url(project), json=body, headers=headers["admin"])).status_code == 201
        assert (await client.post(_url(project), json=body, headers=headers["admin"])).status_code == 409


class TestValidation:
    @pytest.mark.parametrize("body", [
        {"kind": "vendor", "rating": 3},
        {"kind": "team", "rating": 0},
        {"kind": "team", "rating": 6},
        {"kind": "team"},
    ])
    async def test_rejected(self, client, headers, users, make_project, body):
        project = await make_project()
        body.setdefault("targetId", users["member"].id)
        resp = await client.post(_url(project), json=body, headers=headers["manager"])
        assert resp.status_code == 400

    async def test_unknown_target_user(self, client, headers, make_project):
        project = await make_project()
        resp = await client.post(_url(project), json={"kind": "team", "targetId": "ghost", "rating": 3}, headers=headers["manager"])
        assert resp.status_code == 404

    async def test_customers_cannot_evaluate(self, client, headers, make_project):
        project = await make_project()
        resp = await client.post(_url(project), json={"kind": "project", "rating": 5}, headers=headers["customer"])
        assert resp.status_code == 403


class TestListing:
    async def test_project_and_global_listing(self, client, headers, users, make_project):
        project = await make_project()
        await client.post(_url(project), json={"kind": "project", "rating": 5}, headers=headers["manager"])
        await client.post(
            _url(project), json={"kind": "team", "targetId": users["member"].id, "rating": 4}, headers=headers["manager"],
        )

        listing = await client.get(f"{_url(project)}?kind=team", headers=headers["member"])
        assert listing.json()["total"] == 1

        everything = await client.get("/api/v1/evaluations", headers=headers["admin"])
        assert everything.json()["total"] == 2

        by_target = await client.get(f"/api/v1/evaluations?target_id={users['member'].id}", headers=headers["admin"])
        assert [e["kind"] for e in by_target.json()["evaluations"]] == ["team"]

    async def test_global_listing_is_admin_only(self, client, headers):
        assert (await client.get("/api/v1/evaluations", headers=headers["manager"])).status_code == 403
