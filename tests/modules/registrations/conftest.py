"""
Fixtures for alumni registration tests.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from alumni.modules.registrations.models import Registration, RegistrationStatus
from alumni.modules.registrations.schemas import RegistrationCreate


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.flush = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    db.expunge_all = MagicMock()
    db.begin_nested = MagicMock()
    db.begin_nested.return_value.__aexit__.return_value = False
    return db


@pytest.fixture
def make_registration():
    """Factory for transient Registration rows with every workflow field set."""

    def _make(**overrides) -> Registration:
        values = {
            "id": uuid4(),
            "id_or_passport": "A1234567",
            "staff_number": "0012345",
            "full_name": "John Doe",
            "email": "john.doe@example.com",
            "mobile_country_code": "+254",
            "mobile_number": "712345678",
            "professional_network_handle": None,
            "qualifications_attained": [],
            "engagement_preferences": [],
            "consent_given": True,
            "consent_given_at": datetime.now(UTC),
            "status": RegistrationStatus.PENDING,
            "requires_manual_review": False,
            "manual_review_reason": None,
            "manually_reviewed": False,
            "verification_attempts": 0,
            "last_verification_attempt_at": None,
            "next_verification_at": None,
            "name_similarity_score": None,
            "confirmation_email_sent": False,
            "confirmation_email_sent_at": None,
            "approval_email_sent": False,
            "approval_email_sent_at": None,
            "rejection_email_sent": False,
            "rejection_email_sent_at": None,
            "verification_token_hash": None,
            "token_expiry": None,
            "email_verified": False,
            "email_verified_at": None,
            "reviewed_by": None,
            "reviewed_at": None,
            "review_notes": None,
            "rejection_reason": None,
            "version": 1,
            "created_at": datetime.now(UTC),
        }
        values.update(overrides)
        return Registration(**values)

    return _make


@pytest.fixture
def sample_registration(make_registration):
    return make_registration()


@pytest.fixture
def sample_registration_create():
    """A valid registration request."""
    return RegistrationCreate(
        staff_number=" 0012345 ",
        id_or_passport="a1234567",
        full_name="John  Doe",
        email="John.Doe@Example.com",
        mobile_country_code="254",
        mobile_number="712 345 678",
        professional_network_handle="https://www.linkedin.com/in/JohnDoe/",
        current_country_code="ke",
        current_city="Nairobi",
        current_employer="Acme Ltd",
        current_job_title="Engineer",
        industry="Aviation",
        qualifications_attained=["bachelors"],
        engagement_preferences=["mentorship", "networking"],
        consent_given=True,
    )


@pytest.fixture
def admin_actor():
    return "admin@alumni.local"
