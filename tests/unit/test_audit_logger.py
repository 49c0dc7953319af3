"""
Unit tests for audit logging.
"""

import json
from unittest.mock import patch

import pytest

from sim.audit_logger import AuditLogger, get_audit_logger, init_audit_logger

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


class TestAuditLogger:
    """Test audit logger functionality."""

    @pytest.fixture
    def audit_logger(self):
        """Create an AuditLogger instance for testing."""
        return AuditLogger()

    def test_log_event_is_json(self, audit_logger):
        """Generic events are emitted as one JSON object."""
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_event("advisor.created", advisor_id="adv-1", ip="10.0.0.1")

            payload = json.loads(mock_info.call_args[0][0])
            assert payload["event"] == "advisor.created"
            assert payload["advisor_id"] == "adv-1"
            assert payload["ip"] == "10.0.0.1"
            assert "timestamp" in payload

    def test_log_auth_attempt_success(self, audit_logger):
        """Test logging successful authentication attempt."""
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_auth_attempt(wallet=WALLET, method="solana", success=True, ip_address="192.168.1.1")

            mock_info.assert_called_once()
            call_args = mock_info.call_args[0][0]
            assert "AUTH_ATTEMPT" in call_args
            assert f"wallet={WALLET}" in call_args
            assert "method=solana" in call_args
            assert "status=SUCCESS" in call_args
            assert "ip=192.168.1.1" in call_args

    def test_log_auth_attempt_failure(self, audit_logger):
        """Test logging failed authentication attempt."""
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_auth_attempt(wallet=WALLET, method="solana", success=False, ip_address="192.168.1.1")

            assert "status=FAILURE" in mock_info.call_args[0][0]

    def test_log_token_issued(self, audit_logger):
        """Test logging token issuance."""
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_token_issued(user_id="profile-1", token_type="access_token")

            call_args = mock_info.call_args[0][0]
            assert "TOKEN_ISSUED" in call_args
            assert "user=profile-1" in call_args
            assert "type=access_token" in call_args

    def test_log_signature_verification(self, audit_logger):
        """Test logging signature verification."""
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_signature_verification(wallet=WALLET, success=True)

            call_args = mock_info.call_args[0][0]
            assert "SIG_VERIFY" in call_args
            assert WALLET[:16] in call_args
            assert WALLET not in call_args
            assert "type=ed25519" in call_args
            assert "status=SUCCESS" in call_args

    def test_log_session_created(self, audit_logger):
        """Test logging session creation."""
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_session_created(session_id="sess_123456", user_id="profile-1")

            call_args = mock_info.call_args[0][0]
            assert "SESSION_CREATED" in call_args
            assert "session=sess_123" in call_args  # Truncated
            assert "user=profile-1" in call_args

    def test_log_session_destroyed(self, audit_logger):
        """Test logging session destruction."""
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_session_destroyed(session_id="sess_123456", reason="logout")

            call_args = mock_info.call_args[0][0]
            assert "SESSION_DESTROYED" in call_args
            assert "reason=logout" in call_args

    def test_log_payment_event(self, audit_logger):
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_payment_event("session.create", "x402_abcdefghijklmnop", "0xabc", False, reason="expired")

            call_args = mock_info.call_args[0][0]
            assert "PAYMENT" in call_args
            assert "action=session.create" in call_args
            assert "status=FAILURE" in call_args
            assert "reason=expired" in call_args

    def test_log_edit_code_failure_is_warning(self, audit_logger):
        with patch.object(audit_logger.logger, "warning") as mock_warning:
            audit_logger.log_edit_code_failure("adv-1", "mismatch", "10.0.0.1")

            call_args = mock_warning.call_args[0][0]
            assert "EDIT_CODE_REJECTED" in call_args
            assert "advisor=adv-1" in call_args
            assert "reason=mismatch" in call_args

    def test_log_rate_limit_exceeded(self, audit_logger):
        """Test logging rate limit violation."""
        with patch.object(audit_logger.logger, "warning") as mock_warning:
            audit_logger.log_rate_limit_exceeded(ip_address="192.168.1.1", endpoint="/api/auth/solana")

            call_args = mock_warning.call_args[0][0]
            assert "RATE_LIMIT_EXCEEDED" in call_args
            assert "ip=192.168.1.1" in call_args
            assert "endpoint=/api/auth/solana" in call_args

    def test_log_error(self, audit_logger):
        """Test logging application error."""
        with patch.object(audit_logger.logger, "error") as mock_error:
            audit_logger.log_error(error_type="ValueError", error_msg="Invalid input", context={"field": "name"})

            call_args = mock_error.call_args[0][0]
            assert "type=ValueError" in call_args
            assert "msg=Invalid input" in call_args
            assert "context=" in call_args


class TestInitAuditLogger:
    """Test audit logger initialization."""

    def test_init_audit_logger(self):
        """Test that audit logger initializes without errors."""
        init_audit_logger()
        assert isinstance(get_audit_logger(), AuditLogger)
