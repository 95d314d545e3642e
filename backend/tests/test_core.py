"""
Tests for configuration, tokens, error results and proof file storage.
"""

import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from ridecycle.core.config import Settings
from ridecycle.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ServiceResult,
    StateTransitionError,
    ValidationError,
)
from ridecycle.core.security import (
    TokenError,
    create_access_token,
    decode_access_token,
    get_token_user_id,
)
from ridecycle.services.orders.enums import OrderStatus
from ridecycle.services.payments.storage import ProofStorage, ProofStorageError


# ============================================================================
# Configuration Tests
# ============================================================================


@pytest.mark.unit
class TestSettings:
    """Tests for Settings validation."""

    def test_defaults(self):
        settings = Settings(environment="test")

        assert settings.payment_deadline_days == 3
        assert settings.is_test
        assert settings.proof_max_megabytes == 5

    def test_rejects_unknown_database_scheme(self):
        with pytest.raises(PydanticValidationError):
            Settings(database_url="mysql://localhost/ridecycle")

    def test_default_secret_rejected_in_production(self):
        with pytest.raises(PydanticValidationError):
            Settings(
                environment="production",
                secret_key="dev-secret-key-change-in-production",
            )

    def test_comma_separated_lists(self):
        settings = Settings(proof_allowed_content_types="image/png, application/pdf")

        assert settings.proof_allowed_content_types == ["image/png", "application/pdf"]


# ============================================================================
# Token Tests
# ============================================================================


@pytest.mark.unit
class TestAccessTokens:
    """Tests for JWT creation and decoding."""

    def test_round_trip_subject(self):
        user_id = uuid.uuid4()

        payload = decode_access_token(create_access_token(user_id))

        assert get_token_user_id(payload) == user_id

    def test_expired_token(self):
        token = create_access_token(uuid.uuid4(), expires_delta=timedelta(seconds=-5))

        with pytest.raises(TokenError):
            decode_access_token(token)

    def test_garbage_token(self):
        with pytest.raises(TokenError):
            decode_access_token("definitely.not.valid")

    def test_subject_must_be_uuid(self):
        with pytest.raises(TokenError) as exc_info:
            get_token_user_id({"sub": "admin"})

        assert exc_info.value.code

    def test_missing_subject(self):
        with pytest.raises(TokenError):
            get_token_user_id({})


# ============================================================================
# Error Mapping Tests
# ============================================================================


@pytest.mark.unit
class TestErrors:
    """Tests for domain errors and ServiceResult."""

    @pytest.mark.parametrize(
        "error_class,status_code",
        [
            (ValidationError, 422),
            (NotFoundError, 404),
            (AuthorizationError, 403),
            (ConflictError, 409),
        ],
    )
    def test_http_status(self, error_class, status_code):
        assert error_class("boom").http_status == status_code

    def test_state_transition_error_is_a_conflict(self):
        error = StateTransitionError(
            "Cannot move order",
            current_state=OrderStatus.PENDING,
            target_state=OrderStatus.SHIPPED,
            order_id="abc",
        )

        assert isinstance(error, ConflictError)
        assert error.http_status == 409
        assert error.context == {
            "current_state": "pending",
            "target_state": "shipped",
            "order_id": "abc",
        }

    def test_failure_body(self):
        result = ServiceResult.failure(ConflictError("Taken", order_id="abc"))

        assert result.status == 409
        assert result.to_dict() == {
            "success": False,
            "errors": ["Taken"],
            "context": {"order_id": "abc"},
        }

    @pytest.mark.asyncio
    async def test_capture(self):
        async def succeed():
            return 42

        async def fail():
            raise NotFoundError("Missing")

        ok = await ServiceResult.capture(succeed())
        failed = await ServiceResult.capture(fail())

        assert ok.to_dict() == {"success": True, "data": 42}
        assert ok.status == 200
        assert failed.success is False
        assert failed.status == 404


# ============================================================================
# Proof Storage Tests
# ============================================================================


@pytest.mark.unit
class TestProofStorage:
    """Tests for ProofStorage."""

    @pytest.mark.asyncio
    async def test_save_read_delete(self, tmp_path):
        storage = ProofStorage(tmp_path)

        key = await storage.save("R-260301-ABC123", "application/pdf", b"%PDF-1.7")

        assert key.startswith("R-260301-ABC123/")
        assert key.endswith(".pdf")
        assert await storage.read(key) == b"%PDF-1.7"

        await storage.delete(key)
        await storage.delete(key)
        with pytest.raises(ProofStorageError):
            await storage.read(key)

    def test_rejects_path_traversal(self, tmp_path):
        storage = ProofStorage(tmp_path / "proofs")

        with pytest.raises(ProofStorageError):
            storage.path_for("../outside.png")
