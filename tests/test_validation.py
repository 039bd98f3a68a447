"""
Tests for Input Validation Utilities
"""
import pytest
from hypothesis import given, strategies as st

from landlord_assistant.core.validation import PhoneNumberValidator, TextSanitizer


class TestPhoneNumberValidator:
    """Tests for phone number validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("phone,expected", [
        # Valid international numbers
        ("+15551234567", True),
        ("15551234567", True),
        ("+972-50-123-4567", True),
        ("+1 (555) 123 4567", True),
        # Invalid numbers
        ("0501234567", False),  # local format without country code
        ("123", False),
        ("abcdefghij", False),
        ("", False),
        ("+1234567890123456", False),  # Too long
    ])
    def test_validate_phone(self, phone: str, expected: bool):
        """Test E.164-like phone validation"""
        assert PhoneNumberValidator.validate(phone) == expected

    @pytest.mark.unit
    def test_digits(self):
        """ספרות בלבד"""
        assert PhoneNumberValidator.digits("+1 (555) 123-4567") == "15551234567"
        assert PhoneNumberValidator.digits(None) == ""
        assert PhoneNumberValidator.digits("") == ""

    @pytest.mark.unit
    @pytest.mark.parametrize("jid,expected", [
        ("15551234567@s.whatsapp.net", "15551234567"),
        ("15551234567:12@s.whatsapp.net", "15551234567"),
        ("15551234567", "15551234567"),
        ("", ""),
        (None, ""),
    ])
    def test_from_jid(self, jid, expected: str):
        """Test WhatsApp JID to phone conversion"""
        assert PhoneNumberValidator.from_jid(jid) == expected

    @pytest.mark.unit
    def test_lookup_candidates(self):
        """כל הצורות שבהן מספר עשוי להיות שמור, ללא כפילויות"""
        assert PhoneNumberValidator.lookup_candidates(" +1 555 123 4567 ") == [
            "+1 555 123 4567",
            "15551234567",
            "+15551234567",
        ]
        assert PhoneNumberValidator.lookup_candidates("15551234567") == [
            "15551234567",
            "+15551234567",
        ]
        assert PhoneNumberValidator.lookup_candidates(None) == []

    @pytest.mark.unit
    def test_same_number(self):
        """Formatting differences do not matter"""
        assert PhoneNumberValidator.same_number("+1-555-123-4567", "15551234567")
        assert not PhoneNumberValidator.same_number("+15551234567", "+15551234568")
        assert not PhoneNumberValidator.same_number("", "")
        assert not PhoneNumberValidator.same_number(None, "15551234567")

    @pytest.mark.unit
    def test_mask_phone(self):
        """Test phone number masking for privacy"""
        assert PhoneNumberValidator.mask("+15551234567") == "+1555123****"
        assert PhoneNumberValidator.mask("123") == "****"
        assert PhoneNumberValidator.mask(None) == "****"

    @pytest.mark.unit
    @given(st.text(alphabet="0123456789 +-()", max_size=30))
    def test_digits_is_idempotent(self, raw: str):
        """digits(digits(x)) == digits(x)"""
        once = PhoneNumberValidator.digits(raw)
        assert PhoneNumberValidator.digits(once) == once
        assert once.isdigit() or once == ""


class TestTextSanitizer:
    """Tests for text sanitization"""

    @pytest.mark.unit
    def test_sanitize_basic(self):
        """Test basic text sanitization"""
        assert TextSanitizer.sanitize("  Hello World  ") == "Hello World"

    @pytest.mark.unit
    def test_sanitize_collapses_spaces_keeps_newlines(self):
        """רווחים מרובים מתכווצים, שורות חדשות נשמרות"""
        assert TextSanitizer.sanitize("sink   leaks\nagain") == "sink leaks\nagain"

    @pytest.mark.unit
    def test_sanitize_removes_null_bytes(self):
        """Test removing null bytes"""
        assert TextSanitizer.sanitize("Hello\x00World") == "HelloWorld"

    @pytest.mark.unit
    def test_sanitize_max_length(self):
        """Test max length truncation"""
        assert len(TextSanitizer.sanitize("a" * 5000)) == 4000
        assert len(TextSanitizer.sanitize("a" * 200, max_length=100)) == 100

    @pytest.mark.unit
    def test_sanitize_empty(self):
        """Test sanitizing empty input"""
        assert TextSanitizer.sanitize("") == ""
        assert TextSanitizer.sanitize(None) == ""
