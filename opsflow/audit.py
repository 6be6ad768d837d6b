import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import inspect

logger = logging.getLogger(__name__)
audit_log = logging.getLogger("opsflow.audit")

MODULE = "workflows"


def snapshot(row) -> Dict[str, Any]:
    """Column values of an ORM row, keyed by attribute name."""
    values = {}
    for attr in inspect(row).mapper.column_attrs:
        value = getattr(row, attr.key)
        if isinstance(value, Enum):
            value = value.value
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        values[attr.key] = value
    return values


class AuditLogger(ABC):
    """Audit sink. The engine never waits on it and never fails because of it."""

    @abstractmethod
    def log_create(self, module: str, entity_type: str, entity_id: str, name: Optional[str],
                   after: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    def log_update(self, module: str, entity_type: str, entity_id: str, name: Optional[str],
                   before: Optional[Dict[str, Any]] = None, after: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    def log_delete(self, module: str, entity_type: str, entity_id: str, name: Optional[str],
                   before: Optional[Dict[str, Any]] = None) -> None:
        pass


class LoggingAuditLogger(AuditLogger):
    """Writes one structured record per change to the ``opsflow.audit`` logger."""

    def __init__(self, org_id: Optional[str] = None, actor_user_id: Optional[str] = None):
        self.org_id = org_id
        self.actor_user_id = actor_user_id

    def _emit(self, action: str, module: str, entity_type: str, entity_id: str, name: Optional[str],
              before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> None:
        audit_log.info(
            "%s %s.%s %s", action, module, entity_type, entity_id,
            extra={
                "audit": {
                    "action": action,
                    "module": module,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "name": name,
                    "org_id": self.org_id,
                    "actor_user_id": self.actor_user_id,
                    "before": before,
                    "after": after,
                }
            },
        )

    def log_create(self, module, entity_type, entity_id, name, after=None):
        self._emit("create", module, entity_type, entity_id, name, None, after)

    def log_update(self, module, entity_type, entity_id, name, before=None, after=None):
        self._emit("update", module, entity_type, entity_id, name, before, after)

    def log_delete(self, module, entity_type, entity_id, name, before=None):
        self._emit("delete", module, entity_type, entity_id, name, before, None)


class SafeAudit:
    """Wraps an :class:`AuditLogger` so a failing sink is logged and ignored."""

    def __init__(self, sink: Optional[AuditLogger]):
        self.sink = sink

    def _call(self, method: str, *args, **kwargs) -> None:
        if self.sink is None:
            return
        try:
            getattr(self.sink, method)(MODULE, *args, **kwargs)
        except Exception:
            logger.exception("Audit %s failed for %s", method, args[:2])

    def created(self, entity_type: str, entity_id: str, name: Optional[str], after=None) -> None:
        self._call("log_create", entity_type, entity_id, name, after=after)

    def updated(self, entity_type: str, entity_id: str, name: Optional[str], before=None, after=None) -> None:
        self._call("log_update", entity_type, entity_id, name, before=before, after=after)

    def deleted(self, entity_type: str, entity_id: str, name: Optional[str], before=None) -> None:
        self._call("log_delete", entity_type, entity_id, name, before=before)
