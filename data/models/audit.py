"""Registros del libro de auditoría.

Las entradas son inmutables: el ``payload`` se copia y se expone como un
``MappingProxyType`` de solo lectura.  :class:`NotificationRecord` es una vista
derivada de las entradas ``NOTIFICATION_*``; no se almacena por separado.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from core.utils import to_utc


class ActionKind(str, Enum):
    STATE_TRANSITION = "STATE_TRANSITION"
    NOTIFICATION_SENT = "NOTIFICATION_SENT"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"
    SENSITIVE_READ = "SENSITIVE_READ"
    EVALUATION_SUBMITTED = "EVALUATION_SUBMITTED"
    WEIGHTS_REPLACED = "WEIGHTS_REPLACED"


NOTIFICATION_KINDS: FrozenSet[ActionKind] = frozenset(
    {ActionKind.NOTIFICATION_SENT, ActionKind.NOTIFICATION_FAILED}
)


def _freeze(payload: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(copy.deepcopy(dict(payload or {})))


@dataclass(slots=True, frozen=True)
class AuditOutcome:
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "error": self.error}


@dataclass(slots=True, frozen=True)
class AuditDraft:
    """Entrada todavía sin número de secuencia ni fecha."""

    kind: ActionKind
    actor_id: str
    subject_type: str
    subject_id: str
    actor_role: Optional[str] = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    outcome: AuditOutcome = field(default_factory=AuditOutcome)

    def seal(self, entry_id: int, timestamp: datetime) -> "AuditLogEntry":
        return AuditLogEntry(
            id=entry_id,
            timestamp=timestamp,
            kind=self.kind,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            subject_type=self.subject_type,
            subject_id=self.subject_id,
            payload=_freeze(self.payload),
            outcome=self.outcome,
        )


@dataclass(slots=True, frozen=True)
class AuditLogEntry:
    id: int
    timestamp: datetime
    kind: ActionKind
    actor_id: str
    subject_type: str
    subject_id: str
    actor_role: Optional[str] = None
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    outcome: AuditOutcome = field(default_factory=AuditOutcome)

    @property
    def success(self) -> bool:
        return self.outcome.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "subject_type": self.subject_type,
            "subject_id": self.subject_id,
            "payload": copy.deepcopy(dict(self.payload)),
            "outcome": self.outcome.to_dict(),
        }


@dataclass(slots=True, frozen=True)
class AuditFilter:
    """Criterios de consulta; todos se combinan con AND.

    ``since`` es inclusivo y ``until`` exclusivo.
    """

    kinds: Optional[FrozenSet[ActionKind]] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    subject_type: Optional[str] = None
    subject_id: Optional[str] = None
    actor_id: Optional[str] = None

    @classmethod
    def for_kinds(cls, kinds: Iterable[ActionKind], **kwargs: Any) -> "AuditFilter":
        return cls(kinds=frozenset(kinds), **kwargs)

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.kinds is not None and entry.kind not in self.kinds:
            return False
        timestamp = to_utc(entry.timestamp)
        if self.since is not None and timestamp < to_utc(self.since):
            return False
        if self.until is not None and timestamp >= to_utc(self.until):
            return False
        if self.subject_type is not None and entry.subject_type != self.subject_type:
            return False
        if self.subject_id is not None and entry.subject_id != str(self.subject_id):
            return False
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        return True


@dataclass(slots=True, frozen=True)
class NotificationRecord:
    entry_id: int
    timestamp: datetime
    recipient_id: Optional[str]
    recipient_address: Optional[str]
    message_kind: Optional[str]
    subject: Optional[str]
    delivered: bool
    error: Optional[str]
    subject_type: str
    subject_id: str

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "NotificationRecord":
        if entry.kind not in NOTIFICATION_KINDS:
            raise ValueError(f"La entrada {entry.id} no es una notificación")
        payload = entry.payload
        return cls(
            entry_id=entry.id,
            timestamp=entry.timestamp,
            recipient_id=payload.get("recipient_id"),
            recipient_address=payload.get("recipient_address"),
            message_kind=payload.get("message_kind"),
            subject=payload.get("subject"),
            delivered=entry.kind is ActionKind.NOTIFICATION_SENT,
            error=entry.outcome.error,
            subject_type=entry.subject_type,
            subject_id=entry.subject_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "recipient_id": self.recipient_id,
            "recipient_address": self.recipient_address,
            "message_kind": self.message_kind,
            "subject": self.subject,
            "delivered": self.delivered,
            "error": self.error,
            "subject_type": self.subject_type,
            "subject_id": self.subject_id,
        }


__all__ = [
    "ActionKind",
    "AuditDraft",
    "AuditFilter",
    "AuditLogEntry",
    "AuditOutcome",
    "NOTIFICATION_KINDS",
    "NotificationRecord",
]
