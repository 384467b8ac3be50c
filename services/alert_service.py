"""Alertas de plazos, recordatorios y alertas manuales.

Situaciones que generan un recordatorio:

* prácticas no terminales cuya fecha de término pasó hace más de
  ``DIAS_GRACIA`` días (``atrasadas``), con una criticidad según los días de
  retraso;
* prácticas ``PENDIENTE`` cuyo plazo para completar el acta 1
  (``fecha_inicio + PLAZO_ACTA_1``) vence dentro de ``DIAS_ALERTA_PREVIA``;
* prácticas ``PENDIENTE_ACEPTACION_DOCENTE`` cuyo plazo de aceptación
  (``envío del acta 1 + PLAZO_ACEPTACION_DOCENTE``) vence dentro de
  ``DIAS_ALERTA_PREVIA``;
* prácticas ``EN_CURSO`` que terminan dentro de ``DIAS_ALERTA_TERMINO`` y
  prácticas finalizadas hace ``DIAS_ALERTA_INFORME`` días o más sin la nota
  del informe.

Una práctica recibe a lo sumo un recordatorio por día, con todos sus motivos.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from core.config import CoreConfig
from core.errors import PreconditionFailedError
from core.utils import Clock, utc_now
from data.models.audit import AuditFilter, NotificationRecord
from data.models.practice import ActorContext, Practice, PracticeState
from data.storage.base import PracticeStore
from metrics import TimeWindow
from services.notification_service import (
    DispatchOutcome,
    EventKind,
    NotificationDispatcher,
    NotificationEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_ALERT_SUBJECT = "Alerta de Práctica"

_ALERT_KINDS = frozenset({EventKind.RECORDATORIO.value, EventKind.ALERTA_MANUAL.value})

__all__ = [
    "AlertService",
    "Criticality",
    "DeadlineWarning",
    "OverduePractice",
    "ReminderReason",
    "classify_delay",
]


class Criticality(str, Enum):
    NORMAL = "NORMAL"
    BAJO = "BAJO"
    CRITICO = "CRITICO"


class ReminderReason(str, Enum):
    PRACTICA_ATRASADA = "PRACTICA_ATRASADA"
    ACTA1_POR_EXPIRAR = "ACTA1_POR_EXPIRAR"
    ACEPTACION_POR_EXPIRAR = "ACEPTACION_POR_EXPIRAR"
    TERMINO_PROXIMO = "TERMINO_PROXIMO"
    INFORME_PENDIENTE = "INFORME_PENDIENTE"


def classify_delay(days_late: int, *, config: Optional[CoreConfig] = None) -> Criticality:
    config = config or CoreConfig()
    if days_late >= config.dias_alerta_critico:
        return Criticality.CRITICO
    if days_late >= config.dias_alerta_bajo:
        return Criticality.BAJO
    return Criticality.NORMAL


@dataclass(slots=True, frozen=True)
class OverduePractice:
    practice: Practice
    days_late: int
    criticality: Criticality

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practice_id": self.practice.id,
            "state": self.practice.state.value,
            "end_date": self.practice.end_date.isoformat(),
            "days_late": self.days_late,
            "criticality": self.criticality.value,
        }


@dataclass(slots=True, frozen=True)
class DeadlineWarning:
    """A dated milestone; ``days_remaining`` is negative once it has passed."""

    practice: Practice
    reason: ReminderReason
    deadline: date
    days_remaining: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practice_id": self.practice.id,
            "reason": self.reason.value,
            "deadline": self.deadline.isoformat(),
            "days_remaining": self.days_remaining,
        }

    def message(self) -> str:
        if self.reason is ReminderReason.ACTA1_POR_EXPIRAR:
            return f"El plazo para completar el Acta 1 vence el {self.deadline:%d-%m-%Y}."
        if self.reason is ReminderReason.ACEPTACION_POR_EXPIRAR:
            return f"El plazo del docente para aceptar la supervisión vence el {self.deadline:%d-%m-%Y}."
        if self.reason is ReminderReason.TERMINO_PROXIMO:
            return f"La práctica termina el {self.deadline:%d-%m-%Y}."
        return (
            f"La práctica terminó el {self.deadline:%d-%m-%Y} y el informe sigue sin evaluar "
            f"({-self.days_remaining} días)."
        )


def _sorted(warnings: List[DeadlineWarning]) -> List[DeadlineWarning]:
    return sorted(warnings, key=lambda item: (item.deadline, item.practice.id))


class AlertService:
    def __init__(
        self,
        store: PracticeStore,
        dispatcher: Optional[NotificationDispatcher] = None,
        *,
        clock: Clock = utc_now,
        config: Optional[CoreConfig] = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.config = config or CoreConfig()
        logger.debug("Alertas configuradas: %s", self.config.dump())

    def _today(self) -> date:
        return self.clock().date()

    def _require_dispatcher(self, operation: str) -> NotificationDispatcher:
        if self.dispatcher is None:
            raise RuntimeError(f"AlertService.{operation} requiere un NotificationDispatcher")
        return self.dispatcher

    # ------------------------------------------------------------------
    # Detección
    # ------------------------------------------------------------------
    def overdue_practices(self) -> List[OverduePractice]:
        today = self._today()
        overdue: List[OverduePractice] = []
        for practice in self.store.list_practices():
            if practice.state.is_terminal:
                continue
            days_late = (today - practice.end_date).days
            if days_late <= self.config.dias_gracia:
                continue
            overdue.append(
                OverduePractice(
                    practice=practice,
                    days_late=days_late,
                    criticality=classify_delay(days_late, config=self.config),
                )
            )
        overdue.sort(key=lambda item: (item.practice.end_date, item.practice.id))
        return overdue

    def expiring_acta1(self) -> List[DeadlineWarning]:
        today = self._today()
        expiring: List[DeadlineWarning] = []
        for practice in self.store.list_practices():
            if practice.state is not PracticeState.PENDIENTE:
                continue
            deadline = practice.start_date + timedelta(days=self.config.plazo_acta_1)
            remaining = (deadline - today).days
            if remaining <= self.config.dias_alerta_previa:
                expiring.append(
                    DeadlineWarning(practice, ReminderReason.ACTA1_POR_EXPIRAR, deadline, remaining)
                )
        return _sorted(expiring)

    def expiring_acceptance(self) -> List[DeadlineWarning]:
        """Practices waiting on the supervisor whose acceptance window is closing."""

        today = self._today()
        expiring: List[DeadlineWarning] = []
        for practice in self.store.list_practices():
            if practice.state is not PracticeState.PENDIENTE_ACEPTACION_DOCENTE:
                continue
            if practice.acta1_submitted_at is None:
                continue
            deadline = practice.acta1_submitted_at.date() + timedelta(
                days=self.config.plazo_aceptacion_docente
            )
            remaining = (deadline - today).days
            if remaining <= self.config.dias_alerta_previa:
                expiring.append(
                    DeadlineWarning(practice, ReminderReason.ACEPTACION_POR_EXPIRAR, deadline, remaining)
                )
        return _sorted(expiring)

    def upcoming_milestones(self) -> List[DeadlineWarning]:
        """Practices about to end, then finished ones still missing the report grade."""

        today = self._today()
        ending: List[DeadlineWarning] = []
        report_pending: List[DeadlineWarning] = []
        for practice in self.store.list_practices():
            remaining = (practice.end_date - today).days
            if practice.state is PracticeState.EN_CURSO:
                if 0 <= remaining <= self.config.dias_alerta_termino:
                    ending.append(
                        DeadlineWarning(practice, ReminderReason.TERMINO_PROXIMO, practice.end_date, remaining)
                    )
            elif practice.state is PracticeState.FINALIZADA_PENDIENTE_EVAL:
                if -remaining >= self.config.dias_alerta_informe and not practice.supervisor_evaluation_id:
                    report_pending.append(
                        DeadlineWarning(practice, ReminderReason.INFORME_PENDIENTE, practice.end_date, remaining)
                    )
        return _sorted(ending) + _sorted(report_pending)

    def summary(self) -> Dict[str, int]:
        """Conteos por criticidad y por plazo, como en el tablero de alertas."""

        overdue = self.overdue_practices()
        milestones = self.upcoming_milestones()
        return {
            "total": len(overdue),
            "criticas": sum(1 for item in overdue if item.criticality is Criticality.CRITICO),
            "bajas": sum(1 for item in overdue if item.criticality is Criticality.BAJO),
            "normales": sum(1 for item in overdue if item.criticality is Criticality.NORMAL),
            "acta1_por_expirar": len(self.expiring_acta1()),
            "aceptacion_por_expirar": len(self.expiring_acceptance()),
            "termino_proximo": sum(1 for item in milestones if item.reason is ReminderReason.TERMINO_PROXIMO),
            "informe_pendiente": sum(
                1 for item in milestones if item.reason is ReminderReason.INFORME_PENDIENTE
            ),
        }

    # ------------------------------------------------------------------
    # Envío
    # ------------------------------------------------------------------
    def _reminder_events(self) -> List[NotificationEvent]:
        flagged: Dict[str, Dict[str, Any]] = {}

        def _flag(practice_id: str, reason: ReminderReason, message: str, **extra: Any) -> None:
            entry = flagged.setdefault(practice_id, {"motivos": [], "mensajes": []})
            entry["motivos"].append(reason.value)
            entry["mensajes"].append(message)
            for key, value in extra.items():
                entry.setdefault(key, value)

        for item in self.overdue_practices():
            _flag(
                item.practice.id,
                ReminderReason.PRACTICA_ATRASADA,
                f"La práctica terminó el {item.practice.end_date:%d-%m-%Y} y sigue abierta "
                f"({item.days_late} días de retraso).",
                criticidad=item.criticality.value,
                dias_retraso=item.days_late,
            )
        for item in self.expiring_acta1() + self.expiring_acceptance() + self.upcoming_milestones():
            _flag(item.practice.id, item.reason, item.message(), dias_restantes=item.days_remaining)

        events: List[NotificationEvent] = []
        for practice_id, entry in flagged.items():
            reasons = entry.pop("motivos")
            messages = entry.pop("mensajes")
            events.append(
                NotificationEvent.for_practice(
                    EventKind.RECORDATORIO,
                    practice_id,
                    motivo=reasons[0],
                    motivos=tuple(reasons),
                    mensaje="\n".join(messages),
                    **entry,
                )
            )
        return events

    def send_reminders(self, *, cancel: Optional[threading.Event] = None) -> List[DispatchOutcome]:
        """Dispatch one ``RECORDATORIO`` per flagged practice.

        Practices that already received a delivered reminder today are skipped.
        """

        dispatcher = self._require_dispatcher("send_reminders")
        events = self._reminder_events()

        outcomes: List[DispatchOutcome] = []
        for event in events:
            if cancel is not None and cancel.is_set():
                logger.warning("Envío de recordatorios cancelado; %s pendientes", len(events) - len(outcomes))
                break
            if self._already_reminded_today(event.subject_id):
                logger.debug("Práctica %s ya recibió un recordatorio hoy", event.subject_id)
                continue
            outcomes.append(dispatcher.dispatch(event, cancel=cancel))
        logger.info("Recordatorios enviados: %s de %s prácticas señaladas", len(outcomes), len(events))
        return outcomes

    def send_alert(
        self,
        practice_id: str,
        message: str,
        actor: ActorContext,
        *,
        subject: Optional[str] = None,
    ) -> DispatchOutcome:
        """Send a free-text alert about a practice to its student."""

        dispatcher = self._require_dispatcher("send_alert")
        if not (message or "").strip():
            raise PreconditionFailedError(
                "La alerta requiere un mensaje", context={"practice_id": practice_id}
            )
        sender = dispatcher.directory.get_person(actor.actor_id)
        event = NotificationEvent.for_practice(
            EventKind.ALERTA_MANUAL,
            practice_id,
            actor=actor,
            asunto=(subject or "").strip() or DEFAULT_ALERT_SUBJECT,
            mensaje=message.strip(),
            enviado_por=sender.name if sender else actor.display_name or actor.actor_id,
        )
        outcome = dispatcher.dispatch(event)
        logger.info("Alerta manual sobre %s enviada por %s", practice_id, actor.actor_id)
        return outcome

    def alert_history(self, practice_id: str) -> List[NotificationRecord]:
        """Reminders and manual alerts sent about ``practice_id``, newest first."""

        dispatcher = self._require_dispatcher("alert_history")
        records = [
            record
            for record in dispatcher.ledger.notifications(AuditFilter(subject_id=practice_id))
            if record.message_kind in _ALERT_KINDS
        ]
        return sorted(records, key=lambda record: record.entry_id, reverse=True)

    def _already_reminded_today(self, practice_id: str) -> bool:
        window = TimeWindow.day_of(self.clock())
        records = self.dispatcher.ledger.notifications(
            AuditFilter(since=window.since, until=window.until, subject_id=practice_id)
        )
        return any(
            record.delivered and record.message_kind == EventKind.RECORDATORIO.value
            for record in records
        )
