"""Libro de auditoría de solo-anexar.

Registra cada acción sensible (cambios de estado, envíos de notificaciones,
lecturas de credenciales) y responde las consultas de estadísticas y de las
vistas de auditoría del coordinador.  Nada se actualiza ni se elimina.

Cuando el almacén rechaza una escritura, :meth:`AuditLedger.append` lanza
:class:`AuditWriteFailedError`.  Los servicios que no deben revertir su
operación principal usan :meth:`AuditLedger.append_best_effort`, que entrega el
error al canal de reporte (``on_failure``) y devuelve ``None`` para que el
llamador lo marque en su resultado.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, List, Mapping, Optional

from core.config import AUDIT_PAGE_SIZE
from core.errors import AuditWriteFailedError
from core.utils import Clock, utc_now
from data.models.audit import (
    NOTIFICATION_KINDS,
    ActionKind,
    AuditDraft,
    AuditFilter,
    AuditLogEntry,
    AuditOutcome,
    NotificationRecord,
)
from data.models.practice import ActorContext, Role
from data.storage.base import AuditStore

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

FailureReporter = Callable[[AuditWriteFailedError], None]

# Fallos transitorios del almacén que vale la pena reintentar antes de rendirse.
_RETRYABLE_STORE_ERRORS: tuple[type[BaseException], ...] = (TimeoutError, ConnectionError)

__all__ = ["AuditLedger", "AuditQuery", "FailureReporter"]


def _log_failure(error: AuditWriteFailedError) -> None:
    logger.error("AUDITORÍA NO REGISTRADA: %s | %s", error.message, error.context)


class AuditQuery:
    """Secuencia perezosa, finita y reiniciable de entradas filtradas.

    Each iteration takes a fresh snapshot of the ledger, so iterating twice
    yields the entries that exist at the moment each iteration starts.
    """

    def __init__(self, store: AuditStore, audit_filter: AuditFilter) -> None:
        self._store = store
        self.filter = audit_filter

    def __iter__(self) -> Iterator[AuditLogEntry]:
        for entry in self._store.audit_snapshot():
            if self.filter.matches(entry):
                yield entry

    def count(self) -> int:
        return sum(1 for _ in self)

    def newest_first(self) -> List[AuditLogEntry]:
        return sorted(self, key=lambda entry: entry.id, reverse=True)


class AuditLedger:
    def __init__(
        self,
        store: AuditStore,
        *,
        clock: Clock = utc_now,
        on_failure: Optional[FailureReporter] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.on_failure = on_failure or _log_failure

    # ------------------------------------------------------------------
    # Escritura
    # ------------------------------------------------------------------
    def append(
        self,
        kind: ActionKind,
        *,
        actor_id: str,
        actor_role: Optional[Role] = None,
        subject_type: str,
        subject_id: Any,
        payload: Optional[Mapping[str, Any]] = None,
        success: bool = True,
        error: Optional[str] = None,
    ) -> int:
        """Persist one entry and return its sequence id."""

        draft = AuditDraft(
            kind=kind,
            actor_id=actor_id,
            actor_role=actor_role.value if actor_role is not None else None,
            subject_type=subject_type,
            subject_id=str(subject_id),
            payload=dict(payload or {}),
            outcome=AuditOutcome(success=success, error=error),
        )
        try:
            entry = self._persist(draft)
        except Exception as exc:
            raise AuditWriteFailedError(
                f"No se pudo registrar {kind.value} en auditoría: {exc}",
                context={
                    "kind": kind.value,
                    "subject_type": subject_type,
                    "subject_id": str(subject_id),
                    "exception_type": type(exc).__name__,
                },
            ) from exc
        logger.debug("Auditoría #%s %s %s:%s", entry.id, kind.value, subject_type, subject_id)
        return entry.id

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
        retry=retry_if_exception_type(_RETRYABLE_STORE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    def _persist(self, draft: AuditDraft) -> AuditLogEntry:
        return self.store.append_audit(draft, self.clock())

    def append_best_effort(
        self, kind: ActionKind, *, actor: ActorContext, **kwargs: Any
    ) -> Optional[int]:
        """Like :meth:`append` for ``actor``, but report failures instead of raising."""

        try:
            return self.append(kind, actor_id=actor.actor_id, actor_role=actor.role, **kwargs)
        except AuditWriteFailedError as exc:
            self.on_failure(exc)
            return None

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------
    def query(self, audit_filter: Optional[AuditFilter] = None) -> AuditQuery:
        return AuditQuery(self.store, audit_filter or AuditFilter())

    def page(
        self,
        audit_filter: Optional[AuditFilter] = None,
        *,
        limit: int = AUDIT_PAGE_SIZE,
        offset: int = 0,
    ) -> List[AuditLogEntry]:
        """Newest-first page, as shown in the coordinator audit view."""

        if limit < 0 or offset < 0:
            raise ValueError("limit y offset no pueden ser negativos")
        entries = self.query(audit_filter).newest_first()
        return entries[offset : offset + limit]

    def count(self, audit_filter: Optional[AuditFilter] = None) -> int:
        return self.query(audit_filter).count()

    def get(self, entry_id: int) -> Optional[AuditLogEntry]:
        for entry in self.store.audit_snapshot():
            if entry.id == entry_id:
                return entry
        return None

    def notifications(self, audit_filter: Optional[AuditFilter] = None) -> Iterator[NotificationRecord]:
        """Yield :class:`NotificationRecord` views of ``NOTIFICATION_*`` entries."""

        base = audit_filter or AuditFilter()
        kinds = NOTIFICATION_KINDS if base.kinds is None else base.kinds & NOTIFICATION_KINDS
        scoped = AuditFilter(
            kinds=frozenset(kinds),
            since=base.since,
            until=base.until,
            subject_type=base.subject_type,
            subject_id=base.subject_id,
            actor_id=base.actor_id,
        )
        for entry in self.query(scoped):
            yield NotificationRecord.from_entry(entry)
