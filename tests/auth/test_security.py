"""Tests for identity token verification."""

from datetime import UTC, datetime, timedelta

import pytest
from jose import JWTError, jwt

from watchtrack.auth.security import (
    create_identity_token,
    decode_identity_token,
    principal_from_claims,
)
from watchtrack.config import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(auth_secret_key="test-secret-key-with-enough-length-123")


class TestDecodeIdentityToken:
    """Tests for decode_identity_token."""

    def test_round_trip(self, settings: Settings) -> None:
        """Minted token decodes to the same subject and org."""
        token = create_identity_token("user-1", "org-1", role="admin", settings=settings)
        payload = decode_identity_token(token, settings)

        assert payload["sub"] == "user-1"
        assert payload["org_id"] == "org-1"
        assert payload["role"] == "admin"

    def test_wrong_key_rejected(self, settings: Settings) -> None:
        token = create_identity_token("user-1", "org-1", settings=settings)
        other = Settings(auth_secret_key="another-secret-key-of-enough-length")

        with pytest.raises(JWTError):
            decode_identity_token(token, other)

    def test_expired_rejected(self, settings: Settings) -> None:
        token = create_identity_token(
            "user-1", "org-1", expires_delta=timedelta(seconds=-1), settings=settings
        )

        with pytest.raises(JWTError):
            decode_identity_token(token, settings)

    def test_missing_org_claim_rejected(self, settings: Settings) -> None:
        token = jwt.encode(
            {"sub": "user-1", "exp": datetime.now(UTC) + timedelta(minutes=5)},
            settings.auth_secret_key,
            algorithm="HS256",
        )

        with pytest.raises(JWTError, match="org_id"):
            decode_identity_token(token, settings)

    def test_missing_subject_rejected(self, settings: Settings) -> None:
        token = jwt.encode(
            {"org_id": "org-1", "exp": datetime.now(UTC) + timedelta(minutes=5)},
            settings.auth_secret_key,
            algorithm="HS256",
        )

        with pytest.raises(JWTError):
            decode_identity_token(token, settings)

    def test_custom_org_claim(self) -> None:
        settings = Settings(
            auth_secret_key="test-secret-key-with-enough-length-123",
            auth_org_claim="tenant",
        )
        token = create_identity_token("user-1", "org-9", settings=settings)

        payload = decode_identity_token(token, settings)

        assert payload["tenant"] == "org-9"
        assert principal_from_claims(payload, settings).org_id == "org-9"

    def test_audience_enforced_when_configured(self) -> None:
        issuing = Settings(
            auth_secret_key="test-secret-key-with-enough-length-123",
            auth_audience="other-api",
        )
        verifying = Settings(
            auth_secret_key="test-secret-key-with-enough-length-123",
            auth_audience="watchtrack",
        )
        token = create_identity_token("user-1", "org-1", settings=issuing)

        with pytest.raises(JWTError):
            decode_identity_token(token, verifying)


class TestPrincipalFromClaims:
    """Tests for principal_from_claims."""

    def test_defaults_to_learner(self, settings: Settings) -> None:
        principal = principal_from_claims({"sub": "user-1", "org_id": "org-1"}, settings)

        assert principal.user_id == "user-1"
        assert principal.org_id == "org-1"
        assert principal.role == "learner"
        assert principal.is_admin is False

    def test_admin(self, settings: Settings) -> None:
        principal = principal_from_claims(
            {"sub": "user-1", "org_id": "org-1", "role": "admin", "email": "a@b.co"},
            settings,
        )

        assert principal.is_admin is True
        assert principal.email == "a@b.co"
