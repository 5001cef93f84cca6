"""
Tests for the gateway entry point and its response envelope.
"""
import os
import tempfile
from datetime import datetime
from unittest.mock import Mock, patch

import pytest

from issue_ai_guard.config.loader import GatewayConfig, QuotaPolicy
from issue_ai_guard.core.errors import PersistenceError, UpstreamGenerationError
from issue_ai_guard.core.gateway import ErrorKind, Gateway, GatewayResult, build_gateway
from issue_ai_guard.sdk.openai_client import OpenAIGenerator
from issue_ai_guard.storage.repository import initialize_schema

ISSUE = {
    "title": "Crash on save",
    "description": "The editor crashes whenever a large file is saved.",
}


class TestGateway:
    """Test failure tagging and status mapping."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.generator = Mock()
        self.generator.complete.return_value = "A summary."
        self.config = GatewayConfig(quota=QuotaPolicy(per_minute_limit=10, per_day_limit=2))
        self.gateway = build_gateway(self.config, db_path=self.db_path, generator=self.generator)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_fresh_then_cached(self):
        """A fresh result reports remaining quota; the repeat is cached."""
        fresh = self.gateway.request_generation("user-1", "issue-1", "summary", ISSUE)
        cached = self.gateway.request_generation("user-1", "issue-1", "summary", ISSUE)

        assert fresh.ok and fresh.status_code == 200
        assert fresh.to_dict() == {
            "content": "A summary.",
            "cached": False,
            "remaining": {"minute": 9, "daily": 1},
        }
        assert cached.cached is True
        assert cached.content == "A summary."
        self.generator.complete.assert_called_once()

    def test_missing_user_is_unauthenticated(self):
        result = self.gateway.request_generation(None, "issue-1", "summary", ISSUE)

        assert result.error == ErrorKind.UNAUTHENTICATED
        assert result.status_code == 401
        self.generator.complete.assert_not_called()

    def test_denied_access_is_not_found(self):
        gateway = build_gateway(
            self.config,
            db_path=self.db_path,
            generator=self.generator,
            authorize=lambda user_id, entity_id: entity_id == "issue-1"
        )

        result = gateway.request_generation("user-1", "issue-2", "summary", ISSUE)

        assert result.error == ErrorKind.NOT_FOUND
        assert result.status_code == 404
        self.generator.complete.assert_not_called()

    def test_unknown_feature_is_invalid_input(self):
        result = self.gateway.request_generation("user-1", "issue-1", "poem", ISSUE)

        assert result.error == ErrorKind.INVALID_INPUT
        assert result.message == "Invalid AI request type"
        assert result.status_code == 400

    def test_validation_failure_is_invalid_input(self):
        result = self.gateway.request_generation(
            "user-1", "issue-1", "summary", {"description": "short"}
        )

        assert result.error == ErrorKind.INVALID_INPUT
        assert "longer than 10" in result.message

    @pytest.mark.parametrize("feature,inputs", [
        ("label_recommendation", {"title": "Crash", "labels": [{"name": "Bug"}]}),
        ("label_recommendation", {"title": "Crash", "labels": [{"id": "l1"}]}),
        ("duplicate_detection", {"title": "Crash", "issues": [{"title": "Crash on load"}]}),
        ("duplicate_detection", {"title": "Crash", "issues": [{"id": "i1"}]}),
        ("comment_summary", {"comments": [{"author": "ana"} for _ in range(5)]}),
        ("summary", {"description": 12345678901}),
    ])
    def test_malformed_inputs_are_invalid_input(self, feature, inputs):
        """Badly shaped inputs are tagged InvalidInput before any generation."""
        result = self.gateway.request_generation("user-1", "issue-1", feature, inputs)

        assert result.error == ErrorKind.INVALID_INPUT
        assert result.status_code == 400
        self.generator.complete.assert_not_called()
        assert self.gateway.orchestrator.ledger.get_or_create_today("user-1").count == 0

    def test_quota_exceeded_carries_reset(self):
        """Fresh generations past the daily budget are refused with a reset time."""
        self.gateway.request_generation("user-1", "issue-1", "summary", ISSUE)
        self.gateway.request_generation("user-1", "issue-2", "summary", ISSUE)

        result = self.gateway.request_generation("user-1", "issue-3", "summary", ISSUE)

        assert result.error == ErrorKind.QUOTA_EXCEEDED
        assert result.status_code == 429
        assert result.reset_at is not None
        body = result.to_dict()
        assert body["error"] == "QuotaExceeded"
        assert body["resetAt"] == result.reset_at.isoformat()
        assert body["remaining"] == {"minute": 0, "daily": 0}

    def test_upstream_failure(self):
        self.generator.complete.side_effect = UpstreamGenerationError("timed out")

        result = self.gateway.request_generation("user-1", "issue-1", "summary", ISSUE)

        assert result.error == ErrorKind.UPSTREAM_FAILURE
        assert result.status_code == 502
        assert result.message == "timed out"

    def test_persistence_failure(self):
        orchestrator = Mock()
        orchestrator.request_generation.side_effect = PersistenceError("database is locked")
        gateway = Gateway(orchestrator)

        result = gateway.request_generation("user-1", "issue-1", "summary", ISSUE)

        assert result.error == ErrorKind.PERSISTENCE_FAILURE
        assert result.status_code == 500

    def test_missing_api_key_fails_request_not_startup(self):
        """Without credentials the gateway still builds; requests fail upstream."""
        with patch.dict(os.environ, {}, clear=True):
            gateway = build_gateway(self.config, db_path=self.db_path)
            assert isinstance(gateway.orchestrator.generator, OpenAIGenerator)

            result = gateway.request_generation("user-1", "issue-1", "summary", ISSUE)

        assert result.error == ErrorKind.UPSTREAM_FAILURE
        assert "OPENAI_API_KEY" in result.message


class TestGatewayResult:
    """Test the response envelope."""

    def test_cached_envelope(self):
        result = GatewayResult(content="x", cached=True, remaining_minute=4, remaining_daily=50)

        assert result.to_dict() == {
            "content": "x",
            "cached": True,
            "remaining": {"minute": 4, "daily": 50},
        }

    def test_error_envelope_without_reset(self):
        result = GatewayResult(error=ErrorKind.INVALID_INPUT, message="bad")

        assert result.to_dict() == {"error": "InvalidInput", "message": "bad"}
        assert not result.ok

    def test_reset_is_iso_formatted(self):
        result = GatewayResult(
            error=ErrorKind.QUOTA_EXCEEDED,
            message="wait",
            reset_at=datetime(2024, 3, 11, 0, 0, 0)
        )

        assert result.to_dict()["resetAt"] == "2024-03-11T00:00:00"
