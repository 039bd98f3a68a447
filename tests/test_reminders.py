"""
בדיקות לתזכורות: חישוב מועד, שליחה לדיירים, מניעת כפילות ו-API
"""
from datetime import datetime, timedelta, timezone

import pytest

from landlord_assistant.db.models.reminder import Reminder, ReminderStyle, ReminderType
from landlord_assistant.domain.services.reminder_service import (
    TEMPLATES,
    ReminderService,
    is_due,
    parse_time_utc,
    reminder_stamp,
    template_message,
)
from tests.conftest import ADMIN_HEADERS, FakeLLMClient

BASE_URL = "/api/admin/reminders"

DUE_AT = datetime(2026, 3, 1, 9, 0, 30, tzinfo=timezone.utc)
REMINDER_PROMPT = "WhatsApp reminder to tenants"


@pytest.fixture
def reminder_factory(db_session):
    async def _create_reminder(
        reminder_type: ReminderType = ReminderType.RENT,
        day_of_month: int = 1,
        time_utc: str = "09:00",
        style: ReminderStyle = ReminderStyle.MEDIUM,
    ) -> Reminder:
        return await ReminderService.create_reminder(
            db_session,
            reminder_type=reminder_type,
            day_of_month=day_of_month,
            time_utc=time_utc,
            style=style,
        )

    return _create_reminder


# ============================================================================
# Schedule
# ============================================================================


class TestSchedule:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("09:00", (9, 0)),
            ("9:05", (9, 5)),
            (" 23:59 ", (23, 59)),
            ("7", (7, 0)),
            ("24:00", None),
            ("09:60", None),
            ("nine", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_time(self, value, expected):
        assert parse_time_utc(value) == expected

    @pytest.mark.unit
    def test_stamp_is_utc_minute(self):
        naive = datetime(2026, 3, 1, 9, 0, 59)
        shifted = datetime(2026, 3, 1, 11, 0, 5, tzinfo=timezone(timedelta(hours=2)))

        assert reminder_stamp(naive) == "2026-03-01T09:00Z"
        assert reminder_stamp(shifted) == "2026-03-01T09:00Z"

    @pytest.mark.unit
    def test_is_due(self):
        reminder = Reminder(day_of_month=1, time_utc="09:00", is_active=True)

        assert is_due(reminder, DUE_AT)
        assert not is_due(reminder, DUE_AT + timedelta(minutes=1))
        assert not is_due(reminder, DUE_AT + timedelta(days=1))

    @pytest.mark.unit
    def test_not_due_after_send_in_same_minute(self):
        reminder = Reminder(
            day_of_month=1, time_utc="09:00", is_active=True, last_sent_stamp=reminder_stamp(DUE_AT)
        )

        assert not is_due(reminder, DUE_AT)
        # חודש אחר, אותו יום ושעה
        assert is_due(reminder, datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc))

    @pytest.mark.unit
    def test_inactive_or_broken_time(self):
        assert not is_due(Reminder(day_of_month=1, time_utc="09:00", is_active=False), DUE_AT)
        assert not is_due(Reminder(day_of_month=1, time_utc="bad", is_active=True), DUE_AT)

    @pytest.mark.unit
    def test_every_type_and_style_has_template(self):
        for reminder_type in ReminderType:
            for style in ReminderStyle:
                assert template_message(reminder_type, style) == TEMPLATES[reminder_type][style]
        assert "Utility bill" in template_message("utility", "casual")


# ============================================================================
# Delivery
# ============================================================================


class TestRunDue:
    """שליחת התזכורות שהגיע זמנן"""

    @pytest.mark.unit
    async def test_template_when_no_llm(self, db_session, tenant_factory, reminder_factory, fake_whatsapp):
        await tenant_factory()
        await tenant_factory(name="Noa", phone="+15552223333")
        reminder = await reminder_factory()

        results = await ReminderService.run_due(db_session, DUE_AT)

        expected = TEMPLATES[ReminderType.RENT][ReminderStyle.MEDIUM]
        assert [(r.reminder_id, r.sent, r.failed) for r in results] == [(reminder.id, 2, 0)]
        assert fake_whatsapp.sent_to("15551234567") == [expected]
        assert fake_whatsapp.sent_to("15552223333") == [expected]

    @pytest.mark.unit
    async def test_second_run_same_minute_is_skipped(self, db_session, tenant_factory, reminder_factory, fake_whatsapp):
        await tenant_factory()
        reminder = await reminder_factory()

        await ReminderService.run_due(db_session, DUE_AT)
        again = await ReminderService.run_due(db_session, DUE_AT + timedelta(seconds=20))

        assert again == []
        assert len(fake_whatsapp.sent) == 1
        await db_session.refresh(reminder)
        assert reminder.last_sent_stamp == "2026-03-01T09:00Z"

    @pytest.mark.unit
    async def test_not_due_reminders_untouched(self, db_session, tenant_factory, reminder_factory, fake_whatsapp):
        await tenant_factory()
        reminder = await reminder_factory(day_of_month=2)

        assert await ReminderService.run_due(db_session, DUE_AT) == []
        assert fake_whatsapp.sent == []
        assert reminder.last_sent_stamp is None

    @pytest.mark.unit
    async def test_inactive_tenants_skipped(self, db_session, tenant_factory, reminder_factory, fake_whatsapp):
        await tenant_factory()
        await tenant_factory(name="Gone", phone="+15559998888", is_active=False)
        await reminder_factory()

        await ReminderService.run_due(db_session, DUE_AT)

        assert [to for to, _ in fake_whatsapp.sent] == ["15551234567"]

    @pytest.mark.unit
    async def test_failed_deliveries_counted(self, db_session, tenant_factory, reminder_factory, fake_whatsapp):
        await tenant_factory()
        await tenant_factory(name="Noa", phone="+15552223333")
        await reminder_factory()
        fake_whatsapp.fail_for.add("15552223333")

        [result] = await ReminderService.run_due(db_session, DUE_AT)

        assert (result.sent, result.failed) == (1, 1)

    @pytest.mark.unit
    async def test_llm_text_used(self, db_session, tenant_factory, reminder_factory, fake_llm, fake_whatsapp):
        fake_llm.routes[REMINDER_PROMPT] = "  Rent is due today, thanks Dana!  "
        await tenant_factory()
        await reminder_factory(style=ReminderStyle.CASUAL)

        [result] = await ReminderService.run_due(db_session, DUE_AT)

        assert result.message == "Rent is due today, thanks Dana!"
        prompt = next(p for p in fake_llm.prompts if REMINDER_PROMPT in p)
        assert "Tone: casual." in prompt
        assert "Reminder type: rent payment." in prompt

    @pytest.mark.unit
    async def test_llm_failure_falls_back_to_template(self, db_session, tenant_factory, reminder_factory, fake_whatsapp):
        from landlord_assistant.domain.services.agent_service import AgentService

        agent = AgentService(client=FakeLLMClient())
        await tenant_factory()
        await reminder_factory(reminder_type=ReminderType.UTILITY, style=ReminderStyle.SHORT)

        [result] = await ReminderService.run_due(db_session, DUE_AT, agent=agent)

        assert result.message == TEMPLATES[ReminderType.UTILITY][ReminderStyle.SHORT]


# ============================================================================
# API
# ============================================================================


class TestRemindersApi:
    @pytest.mark.integration
    async def test_requires_key(self, test_client):
        response = await test_client.get(BASE_URL)
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_lifecycle(self, test_client):
        created = await test_client.post(
            BASE_URL,
            json={"reminder_type": "utility", "day_of_month": 15, "time_utc": "14:30"},
            headers=ADMIN_HEADERS,
        )
        assert created.status_code == 201
        reminder = created.json()
        assert reminder["style"] == "medium"
        assert reminder["is_active"] is True
        assert reminder["last_sent_stamp"] is None

        listed = await test_client.get(BASE_URL, headers=ADMIN_HEADERS)
        assert [r["id"] for r in listed.json()] == [reminder["id"]]

        deleted = await test_client.delete(f"{BASE_URL}/{reminder['id']}", headers=ADMIN_HEADERS)
        assert deleted.json() == {"deleted": True}
        missing = await test_client.delete(f"{BASE_URL}/{reminder['id']}", headers=ADMIN_HEADERS)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "ERR_4002"

    @pytest.mark.integration
    @pytest.mark.parametrize(
        "body",
        [
            {"reminder_type": "rent", "day_of_month": 0, "time_utc": "09:00"},
            {"reminder_type": "rent", "day_of_month": 31, "time_utc": "09:00"},
            {"reminder_type": "rent", "day_of_month": 1, "time_utc": "9:00"},
            {"reminder_type": "rent", "day_of_month": 1, "time_utc": "24:00"},
            {"reminder_type": "deposit", "day_of_month": 1, "time_utc": "09:00"},
            {"reminder_type": "rent", "day_of_month": 1, "time_utc": "09:00", "style": "angry"},
        ],
    )
    async def test_validation(self, test_client, body):
        response = await test_client.post(BASE_URL, json=body, headers=ADMIN_HEADERS)
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_send_now(self, test_client, tenant_factory, reminder_factory, fake_whatsapp):
        await tenant_factory()
        reminder = await reminder_factory(day_of_month=20)

        response = await test_client.post(f"{BASE_URL}/{reminder.id}/send", headers=ADMIN_HEADERS)

        assert response.json() == {
            "reminder_id": reminder.id,
            "sent": 1,
            "failed": 0,
            "message": TEMPLATES[ReminderType.RENT][ReminderStyle.MEDIUM],
        }
        assert len(fake_whatsapp.sent) == 1
