"""
בדיקות להגדרות התשובה האוטומטית הגלובליות
"""
import pytest

from landlord_assistant.core.config import settings
from landlord_assistant.domain.services.auto_reply_settings import (
    KEY_COOLDOWN_MINUTES,
    KEY_DELAY_MINUTES,
    KEY_ENABLED,
    MAX_COOLDOWN_MINUTES,
    MAX_DELAY_MINUTES,
    load_auto_reply_settings,
    parse_bool_setting,
    parse_minutes_setting,
    save_auto_reply_settings,
)
from landlord_assistant.domain.services.repository import ConversationRepository


class TestParsing:
    """פענוח ערכים שמורים"""

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("ON", True), ("1", True), (" yes ", True),
        ("false", False), ("off", False), ("0", False),
        ("maybe", None), (None, None),
    ])
    def test_bool(self, raw, expected):
        # None = נופל לברירת המחדל
        assert parse_bool_setting(raw, True) == (True if expected is None else expected)
        assert parse_bool_setting(raw, False) == (False if expected is None else expected)

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("3", 3.0), ("0", 0.0), ("2.5", 2.5),
        ("-1", 7.0), ("abc", 7.0), ("nan", 7.0), (None, 7.0),
        ("inf", 7.0), ("-inf", 7.0),
    ])
    def test_minutes(self, raw, expected):
        assert parse_minutes_setting(raw, 7.0) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("30", 30.0), ("60", 60.0), ("61", 60.0), ("1e308", 60.0),
    ])
    def test_minutes_capped(self, raw, expected):
        assert parse_minutes_setting(raw, 7.0, maximum=60.0) == expected


class TestLoadSave:
    """שמירה וטעינה מול app_settings"""

    @pytest.mark.unit
    async def test_defaults_from_env(self, db_session):
        current = await load_auto_reply_settings(ConversationRepository(db_session))

        assert current.enabled == settings.AUTO_REPLY_ENABLED
        assert current.delay_minutes == settings.AUTO_REPLY_DELAY_MINUTES
        assert current.cooldown_minutes == settings.AUTO_REPLY_COOLDOWN_MINUTES

    @pytest.mark.unit
    async def test_partial_update(self, db_session):
        repo = ConversationRepository(db_session)

        saved = await save_auto_reply_settings(repo, enabled=False, delay_minutes=0)

        assert saved.enabled is False
        assert saved.delay_minutes == 0
        assert saved.delay_seconds == 0
        assert saved.cooldown_minutes == settings.AUTO_REPLY_COOLDOWN_MINUTES
        assert await repo.get_setting(KEY_ENABLED) == "false"

    @pytest.mark.unit
    async def test_invalid_stored_value_uses_default(self, db_session):
        repo = ConversationRepository(db_session)
        await repo.set_setting(KEY_DELAY_MINUTES, "-4")

        current = await load_auto_reply_settings(repo)

        assert current.delay_minutes == settings.AUTO_REPLY_DELAY_MINUTES

    @pytest.mark.unit
    async def test_to_dict(self, db_session):
        saved = await save_auto_reply_settings(
            ConversationRepository(db_session), cooldown_minutes=1.5
        )

        assert saved.to_dict()["cooldown_minutes"] == 1.5
        assert saved.cooldown_seconds == 90

    @pytest.mark.unit
    async def test_oversized_stored_values_capped(self, db_session):
        """ערך ענק שנשמר ישירות בטבלה נחתך לתקרה בטעינה"""
        repo = ConversationRepository(db_session)
        await repo.set_setting(KEY_DELAY_MINUTES, "1e308")
        await repo.set_setting(KEY_COOLDOWN_MINUTES, "100000")

        current = await load_auto_reply_settings(repo)

        assert current.delay_minutes == MAX_DELAY_MINUTES
        assert current.cooldown_minutes == MAX_COOLDOWN_MINUTES
        assert current.delay_seconds == MAX_DELAY_MINUTES * 60
