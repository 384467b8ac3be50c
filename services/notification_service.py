"""Despacho de notificaciones con registro en el libro de auditoría.

Cada evento se resuelve en una lista determinista de destinatarios, se
renderiza con el :class:`TemplateRenderer` inyectado y se envía con el
:class:`Transport` inyectado dentro de un ``ThreadPoolExecutor`` acotado.  Cada
intento deja exactamente una entrada ``NOTIFICATION_SENT`` o
``NOTIFICATION_FAILED``.  No hay reintentos: :meth:`NotificationDispatcher.pending_retries`
expone los fallos para un planificador externo.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from core.config import NOTIFICATION_SENDER, CoreConfig
from core.errors import DispatchFailedError, NotFoundError
from data.models.audit import ActionKind, AuditFilter, NotificationRecord
from data.models.practice import ActorContext, Person, Practice, Role
from data.storage.base import Directory, PracticeStore
from metrics import (
    DailySummary,
    NotificationStatistics,
    TimeWindow,
    calculate_daily_summary,
    calculate_notification_statistics,
)
from services.audit_ledger import AuditLedger

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
TIMEOUT = "timeout"
MISSING_ADDRESS = "sin dirección de correo"

_POLL_INTERVAL = 0.05

__all__ = [
    "CANCELLED",
    "DispatchOutcome",
    "DeliveryAttempt",
    "EventKind",
    "MessageContent",
    "NotificationDispatcher",
    "NotificationEvent",
    "Recipient",
    "SendResult",
    "SubjectType",
    "TIMEOUT",
    "TemplateRenderer",
    "Transport",
    "summarise_outcomes",
]


class EventKind(str, Enum):
    PRACTICA_CREADA = "PRACTICA_CREADA"
    ACTA1_PENDIENTE_REVISION = "ACTA1_PENDIENTE_REVISION"
    PRACTICA_EN_CURSO = "PRACTICA_EN_CURSO"
    PRACTICA_FINALIZADA = "PRACTICA_FINALIZADA"
    PRACTICA_CERRADA = "PRACTICA_CERRADA"
    RECORDATORIO = "RECORDATORIO"
    ALERTA_MANUAL = "ALERTA_MANUAL"
    CREDENCIALES = "CREDENCIALES"


class SubjectType(str, Enum):
    PRACTICA = "Practica"
    USUARIO = "Usuario"


class _Audience(str, Enum):
    ALUMNO = "ALUMNO"
    DOCENTE = "DOCENTE"
    EMPLEADOR = "EMPLEADOR"
    COORDINADORES = "COORDINADORES"


# Orden canónico de resolución: alumno, docente, empleador, coordinadores.
_AUDIENCE_ORDER: Tuple[_Audience, ...] = tuple(_Audience)

_PRACTICE_AUDIENCE: Mapping[EventKind, frozenset] = {
    EventKind.PRACTICA_CREADA: frozenset({_Audience.ALUMNO}),
    EventKind.ACTA1_PENDIENTE_REVISION: frozenset({_Audience.DOCENTE, _Audience.COORDINADORES}),
    EventKind.PRACTICA_EN_CURSO: frozenset({_Audience.ALUMNO, _Audience.DOCENTE, _Audience.EMPLEADOR}),
    EventKind.PRACTICA_FINALIZADA: frozenset(
        {_Audience.ALUMNO, _Audience.DOCENTE, _Audience.EMPLEADOR, _Audience.COORDINADORES}
    ),
    EventKind.PRACTICA_CERRADA: frozenset({_Audience.ALUMNO, _Audience.DOCENTE, _Audience.COORDINADORES}),
    EventKind.RECORDATORIO: frozenset({_Audience.ALUMNO, _Audience.DOCENTE}),
    EventKind.ALERTA_MANUAL: frozenset({_Audience.ALUMNO}),
    EventKind.CREDENCIALES: frozenset({_Audience.ALUMNO}),
}


@dataclass(slots=True, frozen=True)
class NotificationEvent:
    """Algo ocurrió sobre una práctica o un usuario y hay que avisar."""

    kind: EventKind
    subject_type: SubjectType
    subject_id: str
    actor: ActorContext = field(default_factory=ActorContext.system)
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def for_practice(
        cls,
        kind: EventKind,
        practice_id: str,
        *,
        actor: Optional[ActorContext] = None,
        **data: Any,
    ) -> "NotificationEvent":
        return cls(kind, SubjectType.PRACTICA, practice_id, actor or ActorContext.system(), dict(data))

    @classmethod
    def for_user(
        cls,
        kind: EventKind,
        user_id: str,
        *,
        actor: Optional[ActorContext] = None,
        **data: Any,
    ) -> "NotificationEvent":
        return cls(kind, SubjectType.USUARIO, user_id, actor or ActorContext.system(), dict(data))


@dataclass(slots=True, frozen=True)
class Recipient:
    id: str
    name: str
    address: Optional[str] = None
    role: Optional[Role] = None

    @classmethod
    def from_person(cls, person: Person) -> "Recipient":
        return cls(id=person.id, name=person.name, address=person.email, role=person.role)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "role": self.role.value if self.role else None,
        }


@dataclass(slots=True, frozen=True)
class MessageContent:
    subject: str
    body: str
    sender: str = NOTIFICATION_SENDER


@dataclass(slots=True, frozen=True)
class SendResult:
    delivered: bool
    error: Optional[str] = None
    provider_id: Optional[str] = None


class TemplateRenderer(Protocol):
    def render(self, kind: EventKind, data: Mapping[str, Any]) -> MessageContent:
        ...


class Transport(Protocol):
    def send(self, recipient: Recipient, content: MessageContent) -> SendResult:
        """Deliver ``content``; return a failed result or raise on error."""


@dataclass(slots=True, frozen=True)
class DeliveryAttempt:
    recipient: Recipient
    delivered: bool
    error: Optional[str] = None
    subject: Optional[str] = None
    provider_id: Optional[str] = None
    audit_entry_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient": self.recipient.to_dict(),
            "delivered": self.delivered,
            "error": self.error,
            "subject": self.subject,
            "provider_id": self.provider_id,
            "audit_entry_id": self.audit_entry_id,
        }


@dataclass(slots=True, frozen=True)
class DispatchOutcome:
    event: NotificationEvent
    attempts: Tuple[DeliveryAttempt, ...] = ()

    @property
    def sent(self) -> int:
        return sum(1 for attempt in self.attempts if attempt.delivered)

    @property
    def failed(self) -> int:
        return len(self.attempts) - self.sent

    @property
    def all_delivered(self) -> bool:
        return bool(self.attempts) and self.failed == 0

    @property
    def audit_complete(self) -> bool:
        """``False`` when some attempt could not be written to the ledger."""

        return all(attempt.audit_entry_id is not None for attempt in self.attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event.kind.value,
            "subject_type": self.event.subject_type.value,
            "subject_id": self.event.subject_id,
            "sent": self.sent,
            "failed": self.failed,
            "audit_complete": self.audit_complete,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


@dataclass(slots=True)
class _PendingSend:
    recipient: Recipient
    content: MessageContent
    future: Optional[Future] = None
    submitted_at: float = 0.0
    started_at: Optional[float] = None
    result: Optional[SendResult] = None


class NotificationDispatcher:
    """Resolve recipients, send through ``transport`` and record every attempt."""

    def __init__(
        self,
        ledger: AuditLedger,
        directory: Directory,
        practices: PracticeStore,
        transport: Transport,
        *,
        renderer: Optional[TemplateRenderer] = None,
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None,
        config: Optional[CoreConfig] = None,
    ) -> None:
        if renderer is None:
            from services.template_renderer import DefaultTemplateRenderer

            renderer = DefaultTemplateRenderer()
        self.ledger = ledger
        self.directory = directory
        self.practices = practices
        self.transport = transport
        self.renderer = renderer
        self.config = (config or CoreConfig()).with_overrides(
            dispatch_max_workers=max_workers,
            dispatch_timeout_seconds=timeout,
        )
        self.max_workers = max(1, int(self.config.dispatch_max_workers))
        configured = self.config.dispatch_timeout_seconds
        self.timeout = configured if configured and configured > 0 else None

    # ------------------------------------------------------------------
    # Destinatarios
    # ------------------------------------------------------------------
    def resolve_recipients(self, event: NotificationEvent) -> List[Recipient]:
        if event.subject_type is SubjectType.USUARIO:
            return [self._recipient_for(event.subject_id)]

        practice = self.practices.get_practice(event.subject_id)
        audience = _PRACTICE_AUDIENCE.get(event.kind, frozenset())
        recipients: List[Recipient] = []
        seen: set[str] = set()

        def _add(recipient: Recipient) -> None:
            if recipient.id in seen:
                return
            seen.add(recipient.id)
            recipients.append(recipient)

        for group in _AUDIENCE_ORDER:
            if group not in audience:
                continue
            if group is _Audience.ALUMNO:
                _add(self._recipient_for(practice.student_id))
            elif group is _Audience.DOCENTE and practice.supervisor_id:
                _add(self._recipient_for(practice.supervisor_id))
            elif group is _Audience.EMPLEADOR and practice.employer_id:
                _add(self._recipient_for(practice.employer_id))
            elif group is _Audience.COORDINADORES:
                for person in self.directory.people_with_role(Role.COORDINADOR):
                    _add(Recipient.from_person(person))
        return recipients

    def _recipient_for(self, person_id: str) -> Recipient:
        person = self.directory.get_person(person_id)
        if person is None:
            logger.warning("Destinatario %s no está en el directorio", person_id)
            return Recipient(id=person_id, name=person_id)
        return Recipient.from_person(person)

    # ------------------------------------------------------------------
    # Envío
    # ------------------------------------------------------------------
    def dispatch(
        self,
        event: NotificationEvent,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> DispatchOutcome:
        """Send ``event`` to every resolved recipient.

        ``timeout`` (seconds, per send) overrides the dispatcher default.  Once
        ``cancel`` is set, sends not yet finished are recorded as
        ``cancelled``; a send already handed to the transport may still be
        delivered by it.
        """

        try:
            recipients = self.resolve_recipients(event)
        except NotFoundError:
            logger.error("No se puede notificar %s: %s %s no existe",
                         event.kind.value, event.subject_type.value, event.subject_id)
            raise
        if not recipients:
            logger.warning("Evento %s sin destinatarios para %s", event.kind.value, event.subject_id)
            return DispatchOutcome(event=event)

        send_timeout = timeout if timeout is not None and timeout > 0 else self.timeout
        base_data = self._template_data(event)
        results: Dict[str, Tuple[SendResult, Optional[str]]] = {}
        pending: List[_PendingSend] = []

        for recipient in recipients:
            if not recipient.address:
                results[recipient.id] = (SendResult(False, MISSING_ADDRESS), None)
                continue
            try:
                content = self.renderer.render(event.kind, {**base_data, "destinatario": recipient.name})
            except Exception as exc:
                logger.error("Error al renderizar %s para %s: %s", event.kind.value, recipient.id, exc)
                results[recipient.id] = (SendResult(False, f"render: {exc}"), None)
                continue
            pending.append(_PendingSend(recipient=recipient, content=content))

        if pending:
            self._send_all(pending, cancel, send_timeout)
            for item in pending:
                results[item.recipient.id] = (item.result, item.content.subject)

        attempts = tuple(
            self._record(event, recipient, *results[recipient.id]) for recipient in recipients
        )
        outcome = DispatchOutcome(event=event, attempts=attempts)
        logger.info(
            "Notificación %s (%s %s): %s enviadas, %s fallidas",
            event.kind.value,
            event.subject_type.value,
            event.subject_id,
            outcome.sent,
            outcome.failed,
        )
        return outcome

    def _send_all(
        self,
        pending: Sequence[_PendingSend],
        cancel: Optional[threading.Event],
        send_timeout: Optional[float],
    ) -> None:
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(pending)),
            thread_name_prefix="notificaciones",
        )
        try:
            for item in pending:
                item.submitted_at = time.monotonic()
                item.future = executor.submit(self._send_one, item, cancel)
            self._collect(pending, cancel, send_timeout)
        finally:
            # No esperar transportes colgados: sus intentos ya quedaron registrados.
            executor.shutdown(wait=False, cancel_futures=True)

    def _send_one(self, item: _PendingSend, cancel: Optional[threading.Event]) -> SendResult:
        if cancel is not None and cancel.is_set():
            return SendResult(False, CANCELLED)
        item.started_at = time.monotonic()
        result = self.transport.send(item.recipient, item.content)
        if result is None:
            raise DispatchFailedError(
                "El transporte no devolvió resultado",
                context={"recipient_id": item.recipient.id},
            )
        if not isinstance(result, SendResult):
            raise DispatchFailedError(
                f"El transporte devolvió {type(result).__name__} en vez de SendResult",
                context={"recipient_id": item.recipient.id},
            )
        return result

    def _collect(
        self,
        pending: Sequence[_PendingSend],
        cancel: Optional[threading.Event],
        send_timeout: Optional[float],
    ) -> None:
        waiting = {item.future: item for item in pending}
        while waiting:
            done, _ = wait(list(waiting), timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
            for future in done:
                item = waiting.pop(future)
                item.result = self._result_of(item)
            now = time.monotonic()
            for future, item in list(waiting.items()):
                if cancel is not None and cancel.is_set():
                    reason = CANCELLED
                elif send_timeout is not None and now - _clock_start(item) > send_timeout:
                    reason = TIMEOUT
                else:
                    continue
                future.cancel()
                waiting.pop(future)
                item.result = SendResult(False, reason)
                logger.warning("Envío a %s abandonado: %s", item.recipient.id, reason)

    def _result_of(self, item: _PendingSend) -> SendResult:
        future = item.future
        if future.cancelled():
            return SendResult(False, CANCELLED)
        exc = future.exception()
        if exc is not None:
            logger.error("Fallo al enviar a %s: %s", item.recipient.id, exc)
            return SendResult(False, str(exc) or type(exc).__name__)
        result = future.result()
        if not result.delivered and not result.error:
            return SendResult(False, "envío rechazado por el transporte", result.provider_id)
        return result

    def _record(
        self,
        event: NotificationEvent,
        recipient: Recipient,
        result: SendResult,
        subject: Optional[str],
    ) -> DeliveryAttempt:
        kind = ActionKind.NOTIFICATION_SENT if result.delivered else ActionKind.NOTIFICATION_FAILED
        entry_id = self.ledger.append_best_effort(
            kind,
            actor=event.actor,
            subject_type=event.subject_type.value,
            subject_id=event.subject_id,
            payload={
                "recipient_id": recipient.id,
                "recipient_address": recipient.address,
                "recipient_role": recipient.role.value if recipient.role else None,
                "message_kind": event.kind.value,
                "subject": subject,
                "provider_id": result.provider_id,
            },
            success=result.delivered,
            error=None if result.delivered else result.error,
        )
        return DeliveryAttempt(
            recipient=recipient,
            delivered=result.delivered,
            error=None if result.delivered else result.error,
            subject=subject,
            provider_id=result.provider_id,
            audit_entry_id=entry_id,
        )

    def _template_data(self, event: NotificationEvent) -> Dict[str, Any]:
        data: Dict[str, Any] = {"plazo_acta_1": self.config.plazo_acta_1}
        if event.subject_type is SubjectType.PRACTICA:
            practice = self.practices.get_practice(event.subject_id)
            data.update(self._practice_data(practice))
        data.update(event.data)
        return data

    def _practice_data(self, practice: Practice) -> Dict[str, Any]:
        student = self.directory.get_person(practice.student_id)
        return {
            "practica_id": practice.id,
            "tipo_practica": practice.type.value,
            "estado": practice.state.value,
            "alumno": student.name if student else practice.student_id,
            "fecha_inicio": practice.start_date,
            "fecha_termino": practice.end_date,
        }

    # ------------------------------------------------------------------
    # Estadísticas
    # ------------------------------------------------------------------
    def records(self, window: Optional[TimeWindow] = None) -> List[NotificationRecord]:
        window = window or TimeWindow()
        return list(self.ledger.notifications(AuditFilter(since=window.since, until=window.until)))

    def statistics(self, window: Optional[TimeWindow] = None) -> NotificationStatistics:
        return calculate_notification_statistics(self.records(window))

    def daily_summary(self) -> DailySummary:
        now = self.ledger.clock()
        week_days = self.config.statistics_week_days
        return calculate_daily_summary(
            self.records(TimeWindow.last_days(now, week_days)), now, week_days=week_days
        )

    def pending_retries(self, window: Optional[TimeWindow] = None) -> List[NotificationRecord]:
        """Failed attempts not followed by a delivery to the same recipient.

        A later ``NOTIFICATION_SENT`` for the same recipient, subject and
        message kind settles an earlier failure.
        """

        latest: Dict[Tuple[Any, ...], NotificationRecord] = {}
        for record in self.records(window):
            key = (record.recipient_id, record.subject_type, record.subject_id, record.message_kind)
            latest[key] = record
        failed = [record for record in latest.values() if not record.delivered]
        return sorted(failed, key=lambda record: record.entry_id)


def _clock_start(item: _PendingSend) -> float:
    """Un envío en cola cuenta desde que se encoló; uno en curso, desde que empezó."""

    return item.started_at if item.started_at is not None else item.submitted_at


def summarise_outcomes(outcomes: Iterable[DispatchOutcome]) -> Dict[str, int]:
    """Totales de una tanda de despachos (p. ej. recordatorios)."""

    sent = failed = 0
    for outcome in outcomes:
        sent += outcome.sent
        failed += outcome.failed
    return {"sent": sent, "failed": failed, "total": sent + failed}
