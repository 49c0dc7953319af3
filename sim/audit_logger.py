"""
Audit logging for Sim.

Security-relevant events (wallet sign-ins, token issuance, edit-code failures,
payments) go to the ``audit`` logger, one line per event.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

_logger = logging.getLogger("audit")
_audit_logger = None  # Will be initialized by init_audit_logger


def init_audit_logger():
    """Initialize the audit logger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)

    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()

    _logger.info("Audit logger initialized")


def get_audit_logger():
    """Get the audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


class AuditLogger:
    """
    Audit logging interface for security events.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        payload = {"event": event, **details, "timestamp": datetime.utcnow().isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_auth_attempt(self, wallet: str, method: str, success: bool, ip_address: Optional[str] = None):
        """Log wallet authentication attempt."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"AUTH_ATTEMPT | wallet={wallet} | method={method} | status={status} | ip={ip_address}")

    def log_token_issued(self, user_id: str, token_type: str):
        """Log token issuance."""
        self.logger.info(f"TOKEN_ISSUED | user={user_id} | type={token_type}")

    def log_signature_verification(self, wallet: str, success: bool, signature_type: str = "ed25519"):
        """Log cryptographic signature verification."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"SIG_VERIFY | wallet={wallet[:16]}... | type={signature_type} | status={status}")

    def log_session_created(self, session_id: str, user_id: str):
        """Log session creation."""
        self.logger.info(f"SESSION_CREATED | session={session_id[:8]}... | user={user_id}")

    def log_session_destroyed(self, session_id: str, reason: str = "logout"):
        """Log session destruction."""
        self.logger.info(f"SESSION_DESTROYED | session={session_id[:8]}... | reason={reason}")

    def log_payment_event(self, action: str, session_id: str, wallet: str, success: bool, reason: Optional[str] = None):
        """Log x402 payment session or purchase activity."""
        status = "SUCCESS" if success else "FAILURE"
        msg = f"PAYMENT | action={action} | session={session_id[:16]} | wallet={wallet} | status={status}"
        if reason:
            msg += f" | reason={reason}"
        self.logger.info(msg)

    def log_edit_code_failure(self, advisor_id: str, reason: str, ip_address: Optional[str] = None):
        """Log a rejected edit-code check."""
        self.logger.warning(f"EDIT_CODE_REJECTED | advisor={advisor_id} | reason={reason} | ip={ip_address}")

    def log_rate_limit_exceeded(self, ip_address: str, endpoint: str):
        """Log rate limit violation."""
        self.logger.warning(f"RATE_LIMIT_EXCEEDED | ip={ip_address} | endpoint={endpoint}")

    def log_error(self, error_type: str, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log application error."""
        msg = f"ERROR | type={error_type} | msg={error_msg}"
        if context:
            msg += f" | context={context}"
        self.logger.error(msg)
