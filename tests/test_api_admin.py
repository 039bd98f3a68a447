"""
בדיקות לנקודות הניהול: ספרייה, הגדרות תשובה אוטומטית ודיאגנוסטיקה
"""
import pytest

from landlord_assistant.domain.services.tenant_reply_service import tenant_key
from tests.conftest import ADMIN_HEADERS

BASE_URL = "/api/admin"


class TestAdminAuth:
    @pytest.mark.integration
    async def test_requires_key(self, test_client):
        response = await test_client.get(f"{BASE_URL}/tenants")
        assert response.status_code == 401


# ============================================================================
# Directory
# ============================================================================


class TestTenants:
    """ניהול דיירים"""

    @pytest.mark.integration
    async def test_create_stores_canonical_phone(self, test_client):
        response = await test_client.post(
            f"{BASE_URL}/tenants",
            json={"name": " Dana ", "phone": "+1 555 123 4567"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Dana"
        assert data["phone"] == "+15551234567"
        assert data["auto_reply_enabled"] is True
        assert data["is_active"] is True

    @pytest.mark.integration
    async def test_duplicate_phone(self, test_client, tenant_factory):
        await tenant_factory(phone="+15551234567")

        response = await test_client.post(
            f"{BASE_URL}/tenants",
            json={"name": "Other", "phone": "15551234567"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_3004"

    @pytest.mark.integration
    @pytest.mark.parametrize("body", [
        {"name": "Dana", "phone": "12"},
        {"name": "   ", "phone": "+15551234567"},
        {"phone": "+15551234567"},
    ])
    async def test_validation(self, test_client, body):
        response = await test_client.post(f"{BASE_URL}/tenants", json=body, headers=ADMIN_HEADERS)
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_unknown_unit(self, test_client):
        response = await test_client.post(
            f"{BASE_URL}/tenants",
            json={"name": "Dana", "phone": "+15551234567", "unit_id": 77},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 404

    @pytest.mark.integration
    async def test_update_disables_auto_reply(self, test_client, tenant_factory):
        tenant = await tenant_factory()

        response = await test_client.patch(
            f"{BASE_URL}/tenants/{tenant.id}",
            json={"auto_reply_enabled": False},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["auto_reply_enabled"] is False
        assert response.json()["name"] == "Dana"

    @pytest.mark.integration
    async def test_delete_deactivates_and_cancels_pending(self, test_client, tenant_factory, reply_scheduler):
        tenant = await tenant_factory()
        reply_scheduler.enqueue(
            key=tenant_key(tenant.id),
            tenant_id=tenant.id,
            content="small leak",
            reply_to="15551234567",
            delay_ms=300_000,
        )

        response = await test_client.delete(f"{BASE_URL}/tenants/{tenant.id}", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert reply_scheduler.get_bucket(tenant_key(tenant.id)) is None

        active = await test_client.get(f"{BASE_URL}/tenants", headers=ADMIN_HEADERS)
        assert active.json() == []
        everyone = await test_client.get(
            f"{BASE_URL}/tenants?include_inactive=true", headers=ADMIN_HEADERS
        )
        assert len(everyone.json()) == 1

    @pytest.mark.integration
    async def test_get_missing(self, test_client):
        response = await test_client.get(f"{BASE_URL}/tenants/999", headers=ADMIN_HEADERS)
        assert response.status_code == 404


class TestContractorsAndUnits:
    """קבלנים ויחידות"""

    @pytest.mark.integration
    async def test_contractor_lifecycle(self, test_client):
        created = await test_client.post(
            f"{BASE_URL}/contractors",
            json={"name": "Moshe", "phone": "+15557654321", "role": "plumber"},
            headers=ADMIN_HEADERS,
        )
        assert created.status_code == 201
        contractor_id = created.json()["id"]

        updated = await test_client.patch(
            f"{BASE_URL}/contractors/{contractor_id}",
            json={"role": "electrician"},
            headers=ADMIN_HEADERS,
        )
        assert updated.json()["role"] == "electrician"

        fetched = await test_client.get(f"{BASE_URL}/contractors/{contractor_id}", headers=ADMIN_HEADERS)
        assert fetched.json()["phone"] == "+15557654321"

        deleted = await test_client.delete(f"{BASE_URL}/contractors/{contractor_id}", headers=ADMIN_HEADERS)
        assert deleted.json()["is_active"] is False
        assert (await test_client.get(f"{BASE_URL}/contractors", headers=ADMIN_HEADERS)).json() == []

    @pytest.mark.integration
    async def test_units(self, test_client):
        created = await test_client.post(
            f"{BASE_URL}/units",
            json={"label": "Apt 3", "address": "12 Oak St"},
            headers=ADMIN_HEADERS,
        )
        assert created.status_code == 201

        listed = await test_client.get(f"{BASE_URL}/units", headers=ADMIN_HEADERS)
        assert listed.json() == [{"id": created.json()["id"], "label": "Apt 3", "address": "12 Oak St"}]

    @pytest.mark.integration
    async def test_unit_update(self, test_client, unit_factory):
        unit = await unit_factory()

        response = await test_client.patch(
            f"{BASE_URL}/units/{unit.id}", json={"label": "Apt 1B"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.json() == {"id": unit.id, "label": "Apt 1B", "address": "1 Main St"}

    @pytest.mark.integration
    async def test_unit_delete_unlinks_tenants(self, test_client, unit_factory, tenant_factory):
        unit = await unit_factory()
        tenant = await tenant_factory(unit_id=unit.id)

        response = await test_client.delete(f"{BASE_URL}/units/{unit.id}", headers=ADMIN_HEADERS)

        assert response.json() == {"deleted": True}
        assert (await test_client.get(f"{BASE_URL}/units", headers=ADMIN_HEADERS)).json() == []
        fetched = await test_client.get(f"{BASE_URL}/tenants/{tenant.id}", headers=ADMIN_HEADERS)
        assert fetched.json()["unit_id"] is None

    @pytest.mark.integration
    async def test_missing_unit(self, test_client):
        patched = await test_client.patch(
            f"{BASE_URL}/units/999", json={"label": "x"}, headers=ADMIN_HEADERS
        )
        deleted = await test_client.delete(f"{BASE_URL}/units/999", headers=ADMIN_HEADERS)

        assert patched.status_code == 404
        assert deleted.status_code == 404


# ============================================================================
# Settings and diagnostics
# ============================================================================


class TestAutoReplySettings:
    """הגדרות התשובה האוטומטית"""

    @pytest.mark.integration
    async def test_get_and_patch(self, test_client):
        before = await test_client.get(f"{BASE_URL}/auto-reply", headers=ADMIN_HEADERS)
        assert before.status_code == 200

        response = await test_client.patch(
            f"{BASE_URL}/auto-reply",
            json={"delay_minutes": 0, "cooldown_minutes": 10},
            headers=ADMIN_HEADERS,
        )

        data = response.json()
        assert data["delay_minutes"] == 0
        assert data["cooldown_minutes"] == 10
        assert data["enabled"] == before.json()["enabled"]

    @pytest.mark.integration
    async def test_negative_values_rejected(self, test_client):
        response = await test_client.patch(
            f"{BASE_URL}/auto-reply", json={"delay_minutes": -1}, headers=ADMIN_HEADERS
        )
        assert response.status_code == 422

    @pytest.mark.integration
    @pytest.mark.parametrize("body", [
        {"delay_minutes": 1e308},
        {"delay_minutes": 121},
        {"cooldown_minutes": 241},
    ])
    async def test_values_above_cap_rejected(self, test_client, body):
        response = await test_client.patch(
            f"{BASE_URL}/auto-reply", json=body, headers=ADMIN_HEADERS
        )
        assert response.status_code == 422

        current = await test_client.get(f"{BASE_URL}/auto-reply", headers=ADMIN_HEADERS)
        assert current.json()["delay_minutes"] <= 120
        assert current.json()["cooldown_minutes"] <= 240


class TestDiagnostics:
    """כלי אבחון"""

    @pytest.mark.integration
    async def test_landlord_numbers_are_masked(self, test_client):
        response = await test_client.get(f"{BASE_URL}/landlord-numbers", headers=ADMIN_HEADERS)
        assert response.json() == ["+1555000****"]

    @pytest.mark.integration
    async def test_whatsapp_test_message(self, test_client, fake_whatsapp):
        response = await test_client.post(
            f"{BASE_URL}/whatsapp/test", json={"to": "+15551234567"}, headers=ADMIN_HEADERS
        )

        assert response.json() == {"ok": True, "error": None, "provider": "fake"}
        assert fake_whatsapp.sent == [("15551234567", "Test message from Landlord Assistant")]

    @pytest.mark.integration
    async def test_whatsapp_test_failure(self, test_client, fake_whatsapp):
        fake_whatsapp.fail_for.add("15551234567")

        response = await test_client.post(
            f"{BASE_URL}/whatsapp/test",
            json={"to": "+15551234567", "text": "ping"},
            headers=ADMIN_HEADERS,
        )

        assert response.json()["ok"] is False
        assert response.json()["error"] == "send_failed_500"

    @pytest.mark.integration
    async def test_circuit_breakers(self, test_client):
        response = await test_client.get(f"{BASE_URL}/circuit-breakers", headers=ADMIN_HEADERS)

        services = [b["service"] for b in response.json()]
        assert services == ["whatsapp", "llm"]
        assert all(b["state"] == "closed" for b in response.json())

    @pytest.mark.integration
    async def test_cancel_pending_reply(self, test_client, reply_scheduler):
        reply_scheduler.enqueue(
            key=tenant_key(5), tenant_id=5, content="hi", reply_to="15551234567", delay_ms=300_000
        )

        first = await test_client.delete(f"{BASE_URL}/pending-replies/5", headers=ADMIN_HEADERS)
        second = await test_client.delete(f"{BASE_URL}/pending-replies/5", headers=ADMIN_HEADERS)

        assert first.json() == {"tenant_id": 5, "cancelled": True}
        assert second.json() == {"tenant_id": 5, "cancelled": False}
