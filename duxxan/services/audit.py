import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder

from ..database import Database
from ..models import AuditEvent

logger = logging.getLogger(__name__)


class AuditLog(ABC):
    """Append-only event trail. Never part of correctness: failures are logged and dropped."""

    @abstractmethod
    async def record(self, entity_type: str, entity_id: Optional[int], event: str,
                     payload: Optional[Dict[str, Any]] = None):
        ...


class DatabaseAuditLog(AuditLog):
    def __init__(self, database: Database):
        self.database = database

    async def record(self, entity_type: str, entity_id: Optional[int], event: str,
                     payload: Optional[Dict[str, Any]] = None):
        try:
            async with self.database.session() as db:
                db.add(AuditEvent(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    event=event,
                    payload=jsonable_encoder(payload or {}),
                ))
                await db.commit()
        except Exception as e:
            logger.warning(f"Audit log write failed ({entity_type}:{entity_id} {event}): {e}")


class NullAuditLog(AuditLog):
    async def record(self, entity_type: str, entity_id: Optional[int], event: str,
                     payload: Optional[Dict[str, Any]] = None):
        logger.debug(f"audit {entity_type}:{entity_id} {event}")


def build_audit_log(backend: str, database: Database) -> AuditLog:
    if backend == "database":
        return DatabaseAuditLog(database)
    if backend == "disabled":
        return NullAuditLog()
    raise ValueError(f"Unknown audit backend: {backend}")
