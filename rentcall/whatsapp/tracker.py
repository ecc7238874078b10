from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel

from rentcall.utils.exceptions import NotFoundError

logger = structlog.get_logger(__name__)


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class DeliveryRecord(BaseModel):
    message_id: str
    status: DeliveryStatus
    recipient_id: str
    last_updated: datetime
    timestamp: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    message_type: Optional[str] = None
    method: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryStatusTracker:
    """
    In-memory status of messages accepted by the provider, keyed by
    provider message id. One instance per process, held on app.state.

    Updates are applied in arrival order (last write wins); the provider
    gives no ordering guarantee so a late "delivered" can follow "read".
    """

    def __init__(self):
        self._records: Dict[str, DeliveryRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def record_sent(
        self,
        message_id: str,
        recipient_id: str,
        message_type: Optional[str] = None,
        method: Optional[str] = None,
    ) -> DeliveryRecord:
        record = DeliveryRecord(
            message_id=message_id,
            status=DeliveryStatus.SENT,
            recipient_id=recipient_id,
            last_updated=_now(),
            message_type=message_type,
            method=method,
        )
        self._records[message_id] = record
        return record

    def apply_status_update(
        self,
        message_id: str,
        status: DeliveryStatus,
        timestamp: Optional[datetime] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[DeliveryRecord]:
        """Overwrite the status of a known message. Unknown ids are dropped."""
        current = self._records.get(message_id)
        if current is None:
            logger.warning("delivery_status_unknown_message", message_id=message_id, status=status)
            return None

        updated = current.model_copy(update={
            "status": DeliveryStatus(status),
            "timestamp": timestamp or current.timestamp,
            "last_updated": _now(),
            "error_code": error_code,
            "error_message": error_message,
        })
        self._records[message_id] = updated
        logger.info(
            "delivery_status_updated",
            message_id=message_id,
            previous=current.status.value,
            status=updated.status.value,
            error_code=error_code,
        )
        return updated

    def query(self, message_id: str) -> DeliveryRecord:
        record = self._records.get(message_id)
        if record is None:
            raise NotFoundError(f"Unknown message id '{message_id}'")
        return record

    def query_all(self) -> List[DeliveryRecord]:
        """Every record, most recently updated first."""
        return sorted(self._records.values(), key=lambda r: r.last_updated, reverse=True)
