# stackspay/x402/audit.py
"""
Audit logging for x402 payment events.

Every protocol transition the gate makes is appended to a JSON-lines file
so that disputes and reconciliation can be answered after the fact: which
requirement was demanded, which payload arrived, whether it verified, and
which transaction was broadcast.

Log location: X402_AUDIT_LOG_PATH. Disable with X402_AUDIT_ENABLED=false.
Write failures are logged and swallowed; auditing never blocks a payment.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from stackspay.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Protocol transitions recorded by the gate."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    ERROR = "error"


def generate_request_id() -> str:
    """Short id correlating the events of one gated request."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    return Path(settings.X402_AUDIT_LOG_PATH)


def ensure_audit_log_directory() -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    log_dir = get_audit_log_path().parent
    try:
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Audit directory created at {log_dir}")
        return True
    except OSError as e:
        logger.error(f"Cannot create audit directory {log_dir}: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    sender: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "sender": sender,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    sender: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an event to the audit log.

    Returns:
        The request_id used for this event, or None if auditing is disabled
        or the write failed
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        sender=sender,
        request_id=request_id
    )

    try:
        ensure_audit_log_directory()
        with open(get_audit_log_path(), "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"audit {event['request_id']}: {event_type.value}")
        return event["request_id"]

    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Audit write failed for {event_type.value}: {e}")
        return None


def log_payment_required_sent(
    client_ip: str,
    amount: str,
    recipient: str,
    chain_id: int,
    resource: Optional[str],
    reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 demand (first demand or re-issued after a rejection)."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "amount": amount,
            "asset": "STX",
            "recipient": recipient,
            "chain_id": chain_id,
            "resource": resource,
            "reason": reason,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_received(
    client_ip: str,
    sender: str,
    amount: str,
    nonce: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_RECEIVED,
        data={
            "amount": amount,
            "nonce": nonce,
        },
        client_ip=client_ip,
        sender=sender,
        request_id=request_id
    )


def log_payment_verified(
    client_ip: str,
    sender: str,
    is_valid: bool,
    invalid_reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "is_valid": is_valid,
            "invalid_reason": invalid_reason,
        },
        client_ip=client_ip,
        sender=sender,
        request_id=request_id
    )


def log_payment_settled(
    client_ip: str,
    sender: str,
    tx_id: Optional[str],
    network: str,
    success: bool,
    error_reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={
            "success": success,
            "tx_id": tx_id,
            "network": network,
            "error_reason": error_reason,
        },
        client_ip=client_ip,
        sender=sender,
        request_id=request_id
    )


def log_payment_failed(
    client_ip: str,
    reason: str,
    stage: str,
    sender: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a failure at ``stage`` (decode, verify, custom_verify, settle, confirm)."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_FAILED,
        data={
            "reason": reason,
            "stage": stage,
        },
        client_ip=client_ip,
        sender=sender,
        request_id=request_id
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        request_id=request_id
    )


def _iter_events():
    log_path = get_audit_log_path()
    if not log_path.exists():
        return
    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                continue


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    request_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Read entries from the audit log, most recent first.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        request_id: Filter by request id (optional)
    """
    try:
        events = [
            event for event in _iter_events()
            if (event_type is None or event.get("event_type") == event_type.value)
            and (request_id is None or event.get("request_id") == request_id)
        ]
    except OSError as e:
        logger.error(f"Audit log unreadable: {e}")
        return []

    return list(reversed(events))[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """Event counts by type plus the first and last timestamps."""
    log_path = get_audit_log_path()
    events_by_type: Dict[str, int] = {}
    total = 0
    first_timestamp = None
    last_timestamp = None

    try:
        for event in _iter_events():
            total += 1
            kind = event.get("event_type", "unknown")
            events_by_type[kind] = events_by_type.get(kind, 0) + 1
            timestamp = event.get("timestamp")
            if timestamp:
                first_timestamp = first_timestamp or timestamp
                last_timestamp = timestamp
    except OSError as e:
        logger.error(f"Audit stats unavailable: {e}")
        return {
            "total_events": 0,
            "events_by_type": {},
            "log_path": str(log_path),
            "log_exists": False,
            "error": str(e),
        }

    return {
        "total_events": total,
        "events_by_type": events_by_type,
        "first_event": first_timestamp,
        "last_event": last_timestamp,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
