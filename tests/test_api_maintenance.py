"""
בדיקות ל-API של שיחות התחזוקה
"""
from unittest.mock import AsyncMock, patch

import pytest

from landlord_assistant.db.models.utility_bill import UtilityBill, UtilityType
from tests.conftest import ADMIN_HEADERS, DRAFT_PROMPT, TRIAGE_PROMPT, triage_json

BASE_URL = "/api/maintenance"


class TestMaintenanceAuth:
    """כל הנקודות דורשות מפתח ניהול"""

    @pytest.mark.integration
    async def test_missing_key(self, test_client):
        response = await test_client.get(f"{BASE_URL}/")
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_wrong_key(self, test_client):
        response = await test_client.get(f"{BASE_URL}/", headers={"X-Admin-API-Key": "nope"})
        assert response.status_code == 403


class TestCreateAndRead:
    """יצירה וצפייה"""

    @pytest.mark.integration
    async def test_create_runs_triage_and_draft(self, test_client, tenant_factory, unit_factory, fake_llm):
        unit = await unit_factory()
        tenant = await tenant_factory(unit_id=unit.id)

        response = await test_client.post(
            f"{BASE_URL}/",
            json={"message": "  The sink   is leaking ", "tenant_id": tenant.id, "autopilot_enabled": False},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "The sink is leaking"
        assert data["unit_id"] == unit.id
        assert data["status"] == "open"
        assert data["priority"] == "normal"
        assert data["category"] == "plumbing"
        assert data["ai_draft"]["draft"] == "Thanks, a plumber will come tomorrow morning."
        assert data["chat_log"][0]["meta"] == {"channel": "api"}
        assert data["autopilot_enabled"] is False

    @pytest.mark.integration
    async def test_create_without_llm(self, test_client):
        response = await test_client.post(
            f"{BASE_URL}/", json={"message": "Door squeaks"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 201
        data = response.json()
        assert data["triage_json"]["source"] == "fallback"
        assert data["ai_draft"]["notes"] == "llm_not_configured"

    @pytest.mark.integration
    async def test_create_for_unknown_tenant(self, test_client):
        response = await test_client.post(
            f"{BASE_URL}/", json={"message": "hi", "tenant_id": 999}, headers=ADMIN_HEADERS
        )
        assert response.status_code == 404

    @pytest.mark.integration
    async def test_create_rejects_blank_message(self, test_client):
        response = await test_client.post(
            f"{BASE_URL}/", json={"message": "   "}, headers=ADMIN_HEADERS
        )
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_get_and_list(self, test_client, maintenance_factory):
        first = await maintenance_factory("first")
        second = await maintenance_factory("second")

        response = await test_client.get(f"{BASE_URL}/{first.id}", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["message"] == "first"

        listed = await test_client.get(f"{BASE_URL}/?limit=10", headers=ADMIN_HEADERS)
        assert {m["id"] for m in listed.json()} == {first.id, second.id}

    @pytest.mark.integration
    async def test_not_found(self, test_client):
        response = await test_client.get(f"{BASE_URL}/12345", headers=ADMIN_HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_2001"


class TestChat:
    """הוספת הודעות לשיחה"""

    @pytest.mark.integration
    async def test_tenant_message_triggers_autopilot(self, test_client, maintenance_factory, fake_llm):
        fake_llm.routes[TRIAGE_PROMPT] = triage_json("low")
        record = await maintenance_factory(autopilot_enabled=True)

        response = await test_client.post(
            f"{BASE_URL}/{record.id}/chat",
            json={"role": "tenant", "content": "Any update?"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["warning"] is None
        maintenance = data["maintenance"]
        assert [e["role"] for e in maintenance["chat_log"]] == ["tenant", "tenant", "ai"]
        assert maintenance["autopilot_status"] == "auto_replied"
        assert maintenance["priority"] == "low"

    @pytest.mark.integration
    async def test_landlord_message_keeps_triage(self, test_client, maintenance_factory, fake_llm):
        record = await maintenance_factory(severity="high")

        response = await test_client.post(
            f"{BASE_URL}/{record.id}/chat",
            json={"content": "I'll call the plumber"},
            headers=ADMIN_HEADERS,
        )

        maintenance = response.json()["maintenance"]
        assert maintenance["landlord_reply"] == "I'll call the plumber"
        assert maintenance["priority"] == "high"
        assert not any(TRIAGE_PROMPT in p for p in fake_llm.prompts)
        assert maintenance["ai_draft"]["draft"] == "Thanks, a plumber will come tomorrow morning."

    @pytest.mark.integration
    async def test_analysis_failure_keeps_message(self, test_client, maintenance_factory, fake_llm):
        record = await maintenance_factory()

        with patch(
            "landlord_assistant.domain.services.agent_service.AgentService.draft_tenant_reply",
            AsyncMock(side_effect=RuntimeError("model exploded")),
        ):
            response = await test_client.post(
                f"{BASE_URL}/{record.id}/chat",
                json={"role": "tenant", "content": "Hello?"},
                headers=ADMIN_HEADERS,
            )

        assert response.status_code == 200
        data = response.json()
        assert data["warning"] == "analysis_failed"
        assert data["maintenance"]["chat_log"][-1]["content"] == "Hello?"

    @pytest.mark.integration
    async def test_invalid_role(self, test_client, maintenance_factory):
        record = await maintenance_factory()

        response = await test_client.post(
            f"{BASE_URL}/{record.id}/chat",
            json={"role": "ai", "content": "hi"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 422


class TestDraftTools:
    """שכתוב טיוטה ועוזר"""

    @pytest.mark.integration
    async def test_refine(self, test_client, maintenance_factory, fake_llm):
        record = await maintenance_factory(draft="Plumber tomorrow")

        response = await test_client.post(
            f"{BASE_URL}/{record.id}/refine",
            json={"instructions": "add a time"},
            headers=ADMIN_HEADERS,
        )

        draft = response.json()["ai_draft"]
        assert draft["draft"] == "Refined: a plumber will come tomorrow at 9."
        assert draft["source"] == "refine"
        assert draft["instructions"] == "add a time"

    @pytest.mark.integration
    async def test_refine_without_base_draft(self, test_client, maintenance_factory, fake_llm):
        record = await maintenance_factory(draft=None)

        response = await test_client.post(
            f"{BASE_URL}/{record.id}/refine",
            json={"instructions": "shorter"},
            headers=ADMIN_HEADERS,
        )

        assert response.json()["ai_draft"]["notes"] == "missing_base_draft"

    @pytest.mark.integration
    async def test_advisor_does_not_change_conversation(self, test_client, maintenance_factory, fake_llm):
        record = await maintenance_factory(draft="Plumber tomorrow")

        response = await test_client.post(
            f"{BASE_URL}/{record.id}/advisor",
            json={"instructions": "how should I answer?"},
            headers=ADMIN_HEADERS,
        )

        assert response.json() == {
            "analysis": "Confirm timing.",
            "reply": "We will send a plumber tomorrow.",
            "notes": None,
        }
        after = await test_client.get(f"{BASE_URL}/{record.id}", headers=ADMIN_HEADERS)
        assert len(after.json()["chat_log"]) == 1


class TestAutopilotAndStatus:
    """autopilot ושינוי סטטוס"""

    @pytest.mark.integration
    async def test_enable_runs_immediately(self, test_client, maintenance_factory):
        record = await maintenance_factory(severity="low", draft="On it!")

        response = await test_client.patch(
            f"{BASE_URL}/{record.id}/autopilot", json={"enabled": True}, headers=ADMIN_HEADERS
        )

        data = response.json()
        assert data["autopilot_enabled"] is True
        assert data["autopilot_status"] == "auto_replied"
        assert data["chat_log"][-1]["content"] == "On it!"

    @pytest.mark.integration
    async def test_disable_with_reason(self, test_client, maintenance_factory):
        record = await maintenance_factory(autopilot_enabled=True)

        response = await test_client.patch(
            f"{BASE_URL}/{record.id}/autopilot",
            json={"enabled": False, "reason": "I'll handle it"},
            headers=ADMIN_HEADERS,
        )

        data = response.json()
        assert data["autopilot_status"] == "disabled"
        assert data["autopilot_log"][-1]["message"] == "I'll handle it"

    @pytest.mark.integration
    async def test_status_update(self, test_client, maintenance_factory):
        record = await maintenance_factory()

        response = await test_client.patch(
            f"{BASE_URL}/{record.id}/status", json={"status": "resolved"}, headers=ADMIN_HEADERS
        )
        assert response.json()["status"] == "resolved"

        filtered = await test_client.get(f"{BASE_URL}/?status=open", headers=ADMIN_HEADERS)
        assert filtered.json() == []

    @pytest.mark.integration
    async def test_invalid_status(self, test_client, maintenance_factory):
        record = await maintenance_factory()

        response = await test_client.patch(
            f"{BASE_URL}/{record.id}/status", json={"status": "archived"}, headers=ADMIN_HEADERS
        )
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_delete(self, test_client, maintenance_factory):
        record = await maintenance_factory()

        first = await test_client.delete(f"{BASE_URL}/{record.id}", headers=ADMIN_HEADERS)
        second = await test_client.delete(f"{BASE_URL}/{record.id}", headers=ADMIN_HEADERS)

        assert first.json() == {"deleted": True}
        assert second.status_code == 404
        assert (await test_client.get(f"{BASE_URL}/{record.id}", headers=ADMIN_HEADERS)).status_code == 404


class TestUtilityContext:
    """חשבונות השירותים של הדייר מצורפים לטיוטה"""

    @pytest.mark.integration
    async def test_flagged_bill_reaches_draft_prompt(self, test_client, db_session, tenant_factory, fake_llm):
        tenant = await tenant_factory()
        db_session.add(UtilityBill(
            tenant_id=tenant.id,
            utility_type=UtilityType.HYDRO,
            amount_cents=42000,
            anomaly_flag=True,
            anomaly_notes="Hydro doubled since March",
        ))
        await db_session.commit()

        response = await test_client.post(
            f"{BASE_URL}/",
            json={"message": "Why is the hydro so high?", "tenant_id": tenant.id},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 201
        draft_prompt = next(p for p in fake_llm.prompts if DRAFT_PROMPT in p)
        assert "--- UTILITY CHECK ---" in draft_prompt
        assert "Hydro doubled since March" in draft_prompt

    @pytest.mark.integration
    async def test_no_bills_no_section(self, test_client, tenant_factory, fake_llm):
        tenant = await tenant_factory()

        await test_client.post(
            f"{BASE_URL}/", json={"message": "Sink leaks", "tenant_id": tenant.id}, headers=ADMIN_HEADERS
        )

        draft_prompt = next(p for p in fake_llm.prompts if DRAFT_PROMPT in p)
        assert "UTILITY CHECK" not in draft_prompt
