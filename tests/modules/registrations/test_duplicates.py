"""
Tests for identity field normalization and the advisory duplicate check.
"""

from unittest.mock import AsyncMock, patch

import pytest

from alumni.modules.registrations.duplicates import (
    DEDUP_FIELDS,
    IdentityFields,
    duplicate_message,
    find_conflict,
    normalize_email,
    normalize_handle,
    normalize_identifier,
    normalize_mobile,
)


class TestNormalizers:
    def test_identifier_is_trimmed_and_uppercased(self):
        assert normalize_identifier("  ab123 ") == "AB123"

    def test_blank_identifier_is_absent(self):
        assert normalize_identifier("   ") is None

    def test_email_is_lowercased(self):
        assert normalize_email(" John.Doe@Example.COM ") == "john.doe@example.com"

    def test_handle_drops_trailing_slash(self):
        assert (
            normalize_handle("https://www.LinkedIn.com/in/JohnDoe/")
            == "https://www.linkedin.com/in/johndoe"
        )

    def test_mobile_country_code_gets_plus(self):
        assert normalize_mobile("254", "712 345-678") == ("+254", "712345678")
        assert normalize_mobile("+254", "(712) 345.678") == ("+254", "712345678")

    def test_mobile_with_missing_half_is_absent(self):
        assert normalize_mobile("+254", None) == (None, None)
        assert normalize_mobile(None, "712345678") == (None, None)


class TestIdentityFields:
    def test_normalize_all_fields(self):
        fields = IdentityFields.normalize(
            id_or_passport="a1234567",
            staff_number=" 0012345 ",
            email="John@Example.com",
            mobile_country_code="254",
            mobile_number="712345678",
        )

        assert fields.as_columns() == {
            "id_or_passport": "A1234567",
            "staff_number": "0012345",
            "email": "john@example.com",
            "mobile_country_code": "+254",
            "mobile_number": "712345678",
            "professional_network_handle": None,
        }

    def test_mobile_lookup_value_is_a_pair(self):
        fields = IdentityFields.normalize(mobile_country_code="+254", mobile_number="712345678")
        assert fields.value_for("mobile") == ("+254", "712345678")

    def test_absent_mobile_has_no_lookup_value(self):
        fields = IdentityFields.normalize(email="a@b.com")
        assert fields.value_for("mobile") is None


class TestFindConflict:
    @pytest.mark.asyncio
    async def test_no_conflict(self, mock_db):
        fields = IdentityFields.normalize(id_or_passport="A1", email="a@b.com")

        with patch(
            "alumni.modules.registrations.repository.exists_by_field",
            AsyncMock(return_value=False),
        ) as mock_exists:
            assert await find_conflict(mock_db, fields) is None

        checked = [call.args[1] for call in mock_exists.await_args_list]
        assert checked == ["id_or_passport", "email"]

    @pytest.mark.asyncio
    async def test_reports_first_conflict_in_priority_order(self, mock_db):
        fields = IdentityFields.normalize(
            id_or_passport="A1",
            staff_number="S1",
            email="a@b.com",
            mobile_country_code="+254",
            mobile_number="700000000",
        )

        async def exists(db, field, value):
            return field in ("email", "mobile")

        with patch("alumni.modules.registrations.repository.exists_by_field", side_effect=exists):
            assert await find_conflict(mock_db, fields) == "email"

    @pytest.mark.asyncio
    async def test_checks_normalized_values(self, mock_db):
        fields = IdentityFields.normalize(email="  JOHN@EXAMPLE.COM ")

        with patch(
            "alumni.modules.registrations.repository.exists_by_field",
            AsyncMock(return_value=True),
        ) as mock_exists:
            assert await find_conflict(mock_db, fields) == "email"

        mock_exists.assert_awaited_once_with(mock_db, "email", "john@example.com")

    @pytest.mark.asyncio
    async def test_empty_fields_are_never_queried(self, mock_db):
        with patch(
            "alumni.modules.registrations.repository.exists_by_field", AsyncMock()
        ) as mock_exists:
            assert await find_conflict(mock_db, IdentityFields.normalize()) is None

        mock_exists.assert_not_awaited()


def test_priority_order():
    assert DEDUP_FIELDS == (
        "id_or_passport",
        "staff_number",
        "email",
        "mobile",
        "professional_network_handle",
    )


def test_duplicate_message_names_the_field():
    assert duplicate_message("mobile") == "A registration with this mobile number already exists."
