"""
Logging configuration for the EBK registration ledger.

Provides structured JSON logging for ledger events and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for ledger events.

    Provides methods for logging admission decisions, ledger writes,
    verification outcomes and storage faults.
    """

    def __init__(self, name: str = "ebk.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def admission_rejected(
        self,
        operation: str,
        reason: str,
        client_id: str,
        claimed_ts: Optional[int] = None
    ) -> None:
        """Log a request rejected by the freshness or signature gate."""
        self._log(
            logging.WARNING,
            "ADMISSION_REJECTED",
            operation=operation,
            reason=reason,
            client_id=client_id,
            claimed_ts=claimed_ts,
            message=f"{operation} rejected: {reason}"
        )

    def birth_recorded(self, cert_id: str, inserted: bool) -> None:
        self._log(
            logging.INFO,
            "BIRTH_RECORDED",
            cert_id=cert_id,
            inserted=inserted,
            message=f"Birth {cert_id} {'inserted' if inserted else 'already present'}"
        )

    def transfer_recorded(self, sid: str, from_owner: Optional[str], to_owner: Optional[str]) -> None:
        self._log(
            logging.INFO,
            "TRANSFER_RECORDED",
            sid=sid,
            from_owner=from_owner,
            to_owner=to_owner,
            message=f"Transfer recorded for {sid}"
        )

    def verification(self, cert_id: str, status: str) -> None:
        """Log a verification outcome."""
        level = logging.INFO if status == "verified" else logging.WARNING
        self._log(
            level,
            "VERIFICATION",
            cert_id=cert_id,
            status=status,
            message=f"Verification of {cert_id}: {status}"
        )

    def storage_failure(self, operation: str, error: str) -> None:
        self._log(
            logging.ERROR,
            "STORAGE_FAILURE",
            operation=operation,
            error=error,
            message=f"Storage failure during {operation}"
        )

    def audit_append_failed(self, event: str, error: str) -> None:
        self._log(
            logging.ERROR,
            "AUDIT_APPEND_FAILED",
            audit_event=event,
            error=error,
            message=f"Audit append failed for {event}"
        )


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = AuditLogger()
