"""
Tests for API routes — health, root, notification inbox, activity log.
"""

from unittest.mock import patch

from sqlalchemy import select

from backoffice.models.notification import Notification
from backoffice.routes.activity import log_activity
from backoffice.services.notify import notify, notify_admins, whatsapp_link


class TestHealthEndpoint:
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "version" in data
        assert "timestamp" in data


class TestRootEndpoint:
    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        data = resp.json()
        assert "service" in data
        assert "Studio Back-Office" in data["service"]


class TestNotificationsAPI:
    async def test_inbox_is_per_user(self, client, headers, users):
        await notify([users["manager"].id], "Nova tarefa", "Projeto X", category="project", email=False)
        await notify([users["member"].id], "Outra", "Projeto Y", email=False)

        resp = await client.get("/api/v1/notifications", headers=headers["manager"])
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        assert data["notifications"][0]["title"] == "Nova tarefa"
        assert data["notifications"][0]["read"] is False

    async def test_mark_read(self, client, headers, users):
        await notify([users["manager"].id], "Um", "1", email=False)
        await notify([users["manager"].id], "Dois", "2", email=False)
        items = (await client.get("/api/v1/notifications", headers=headers["manager"])).json()["notifications"]

        resp = await client.post(f"/api/v1/notifications/{items[0]['id']}/read", headers=headers["manager"])
        assert resp.status_code == 200
        unread = await client.get("/api/v1/notifications?unread=true", headers=headers["manager"])
        assert unread.json()["total"] == 1

        resp = await client.post("/api/v1/notifications/read-all", headers=headers["manager"])
        assert resp.json()["updated"] == 1

    async def test_cannot_touch_someone_elses(self, client, headers, users):
        await notify([users["admin"].id], "Privado", "Só admin", email=False)
        items = (await client.get("/api/v1/notifications", headers=headers["admin"])).json()["notifications"]

        resp = await client.post(f"/api/v1/notifications/{items[0]['id']}/read", headers=headers["member"])
        assert resp.status_code == 404

    async def test_requires_login(self, client):
        assert (await client.get("/api/v1/notifications")).status_code == 401


class TestNotify:
    async def test_admins_get_inbox_and_email(self, db_session, users, outbox):
        written = await notify_admins("Entrada recebida", "Maria pagou", category="payment", link="/projetos/1")
        assert written == 1
        assert [c.args[2] for c in outbox.call_args_list] == ["ana@studio.example.com"]

        result = await db_session.execute(select(Notification))
        note = result.scalar_one()
        assert note.user_id == users["admin"].id
        assert note.link == "/projetos/1"

    async def test_unknown_level_falls_back_to_info(self, db_session, users):
        await notify([users["member"].id], "T", "M", level="critical", email=False)
        note = (await db_session.execute(select(Notification))).scalar_one()
        assert note.type == "info"

    async def test_nobody_to_notify(self):
        assert await notify([None, None], "T", "M") == 0

    async def test_email_failure_is_swallowed(self, users):
        with patch("backoffice.services.notify.send_email", side_effect=RuntimeError("smtp down")):
            assert await notify([users["member"].id], "T", "M") == 1

    def test_whatsapp_link(self):
        assert whatsapp_link("(11) 98765-4321", "Olá") == "https://wa.me/5511987654321?text=Ol%C3%A1"
        assert whatsapp_link("55 11 98765-4321", "x") == "https://wa.me/5511987654321?text=x"
        assert whatsapp_link("", "x") is None


class TestActivityAPI:
    async def test_auditor_only(self, client, headers):
        assert (await client.get("/api/v1/activity", headers=headers["manager"])).status_code == 403
        assert (await client.get("/api/v1/activity", headers=headers["admin"])).status_code == 200

    async def test_filters_and_entity_history(self, client, headers):
        await log_activity("budget", "b-1", "created", description="Novo", actor="client:Maria")
        await log_activity("budget", "b-1", "sent", level="SUCCESS", actor="user:1")
        await log_activity("project", "p-1", "progress")

        resp = await client.get("/api/v1/activity?entity_type=budget&level=success", headers=headers["admin"])
        assert [a["action"] for a in resp.json()["activities"]] == ["sent"]

        history = await client.get("/api/v1/activity/entity/budget/b-1", headers=headers["admin"])
        assert history.json()["total"] == 2
        assert {h["actor"] for h in history.json()["history"]} == {"client:Maria", "user:1"}
