"""Máquina de estados del ciclo de vida de una práctica.

Flujo normal::

    PENDIENTE -> PENDIENTE_ACEPTACION_DOCENTE -> EN_CURSO
      -> FINALIZADA_PENDIENTE_EVAL -> EVALUACION_COMPLETA -> CERRADA

con ``RECHAZADA_DOCENTE`` como desvío desde la aceptación, dos retrocesos
correctivos y ``ANULADA`` alcanzable desde cualquier estado no terminal.

Cada cambio se escribe con compare-and-set sobre ``Practice.version``: de dos
llamadas concurrentes sobre la misma práctica solo una gana y la otra recibe
:class:`ConflictError`.  El cierre calcula la nota final y guarda el acta en la
misma escritura condicionada, de modo que una práctica nunca se cierra dos
veces.  La auditoría y las notificaciones ocurren después de la escritura y
sus fallos nunca revierten la transición.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from core.errors import (
    AuditWriteFailedError,
    ConflictError,
    InvalidTransitionError,
    PreconditionFailedError,
)
from core.utils import Clock
from data.models.audit import ActionKind, AuditFilter, AuditLogEntry
from data.models.practice import (
    ActorContext,
    Evaluation,
    EvaluationAuthor,
    FinalActa,
    Practice,
    PracticeState,
    Role,
)
from data.storage.base import PracticeStore
from grading import compute_base_grade, compute_final_grade, grading_fingerprint, validate_grade
from services.audit_ledger import AuditLedger
from services.notification_service import (
    DispatchOutcome,
    EventKind,
    NotificationDispatcher,
    NotificationEvent,
    SubjectType,
)
from services.weights_service import WeightSettings
from utils.validators import TransitionRequest, ValidationResult, validate_transition

logger = logging.getLogger(__name__)

PRACTICE_SUBJECT = SubjectType.PRACTICA.value

_S = PracticeState

TRANSITIONS: Mapping[PracticeState, FrozenSet[PracticeState]] = {
    _S.PENDIENTE: frozenset({_S.PENDIENTE_ACEPTACION_DOCENTE, _S.ANULADA}),
    _S.PENDIENTE_ACEPTACION_DOCENTE: frozenset({_S.EN_CURSO, _S.RECHAZADA_DOCENTE, _S.ANULADA}),
    _S.RECHAZADA_DOCENTE: frozenset({_S.PENDIENTE_ACEPTACION_DOCENTE, _S.ANULADA}),
    _S.EN_CURSO: frozenset({_S.FINALIZADA_PENDIENTE_EVAL, _S.ANULADA}),
    _S.FINALIZADA_PENDIENTE_EVAL: frozenset({_S.EVALUACION_COMPLETA, _S.EN_CURSO, _S.ANULADA}),
    _S.EVALUACION_COMPLETA: frozenset({_S.CERRADA, _S.FINALIZADA_PENDIENTE_EVAL, _S.ANULADA}),
    _S.CERRADA: frozenset(),
    _S.ANULADA: frozenset(),
}

MILESTONE_EVENTS: Mapping[PracticeState, EventKind] = {
    _S.PENDIENTE_ACEPTACION_DOCENTE: EventKind.ACTA1_PENDIENTE_REVISION,
    _S.EN_CURSO: EventKind.PRACTICA_EN_CURSO,
    _S.FINALIZADA_PENDIENTE_EVAL: EventKind.PRACTICA_FINALIZADA,
    _S.CERRADA: EventKind.PRACTICA_CERRADA,
}

_EVALUATION_STAFF = frozenset({Role.COORDINADOR, Role.DIRECTOR, Role.ADMIN})

AuditFailureHandler = Callable[[AuditWriteFailedError], None]

__all__ = [
    "MILESTONE_EVENTS",
    "PracticeStateMachine",
    "TRANSITIONS",
    "TransitionResult",
    "is_allowed",
]


def is_allowed(current: PracticeState, target: PracticeState) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def _report_audit_failure(error: AuditWriteFailedError) -> None:
    logger.error("Transición sin registro de auditoría: %s | %s", error.message, error.context)


@dataclass(slots=True, frozen=True)
class TransitionResult:
    """Resultado de :meth:`PracticeStateMachine.request_transition`.

    ``audit_entry_id`` es ``None`` cuando la entrada de auditoría no se pudo
    escribir; ``warnings`` lo describe.  En un cierre idempotente no se escribe
    auditoría nueva y ``idempotent`` es ``True``.
    """

    practice: Practice
    previous_state: PracticeState
    final_acta: Optional[FinalActa] = None
    idempotent: bool = False
    audit_entry_id: Optional[int] = None
    warnings: Tuple[str, ...] = ()

    @property
    def audit_recorded(self) -> bool:
        return self.idempotent or self.audit_entry_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practice": self.practice.to_dict(),
            "previous_state": self.previous_state.value,
            "final_acta": self.final_acta.to_dict() if self.final_acta else None,
            "idempotent": self.idempotent,
            "audit_entry_id": self.audit_entry_id,
            "warnings": list(self.warnings),
        }


class PracticeStateMachine:
    """Single entry point for every state change of a practice."""

    def __init__(
        self,
        store: PracticeStore,
        ledger: AuditLedger,
        weights: WeightSettings,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        executor: Optional[Executor] = None,
        clock: Optional[Clock] = None,
        on_audit_failure: Optional[AuditFailureHandler] = None,
        id_factory: Optional[Callable[[], str]] = None,
        auto_complete_evaluations: bool = True,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.weights = weights
        self.dispatcher = dispatcher
        self.executor = executor
        self.clock = clock or ledger.clock
        self.on_audit_failure = on_audit_failure or _report_audit_failure
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)
        self.auto_complete_evaluations = auto_complete_evaluations

    # ------------------------------------------------------------------
    # Registro
    # ------------------------------------------------------------------
    def register_practice(self, practice: Practice, actor: ActorContext) -> Practice:
        """Store a new ``PENDIENTE`` practice and ask the student for acta 1."""

        if practice.state is not PracticeState.PENDIENTE:
            raise PreconditionFailedError(
                "Una práctica nueva debe comenzar en PENDIENTE",
                context={"practice_id": practice.id, "state": practice.state.value},
            )
        if practice.end_date < practice.start_date:
            raise PreconditionFailedError(
                "La fecha de término es anterior a la fecha de inicio",
                context={"practice_id": practice.id},
            )
        errors = practice.consistency_errors()
        if errors:
            raise PreconditionFailedError(
                "; ".join(errors), context={"practice_id": practice.id, "errors": errors}
            )

        stored = self.store.add_practice(replace(practice, updated_at=self.clock()))
        logger.info("Práctica %s registrada para el alumno %s", stored.id, stored.student_id)
        self._audit(
            ActionKind.STATE_TRANSITION,
            actor,
            stored.id,
            {"from": None, "to": stored.state.value, "version": stored.version},
        )
        self._notify(NotificationEvent.for_practice(EventKind.PRACTICA_CREADA, stored.id, actor=actor))
        return stored

    def get_practice(self, practice_id: str) -> Practice:
        return self.store.get_practice(practice_id)

    # ------------------------------------------------------------------
    # Transiciones
    # ------------------------------------------------------------------
    def request_transition(
        self,
        practice_id: str,
        target_state: PracticeState,
        actor: ActorContext,
        *,
        reason: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> TransitionResult:
        target_state = PracticeState(target_state)
        practice = self.store.get_practice(practice_id)

        if target_state is PracticeState.CERRADA:
            existing = self.store.get_final_acta(practice_id)
            if existing is not None:
                # Releer: el acta pudo escribirse después de la primera lectura.
                practice = self.store.get_practice(practice_id)
                self._check_preconditions(practice, target_state, actor, reason)
                logger.info("Práctica %s ya estaba cerrada; se devuelve el acta existente", practice_id)
                return TransitionResult(
                    practice=practice,
                    previous_state=practice.state,
                    final_acta=existing,
                    idempotent=True,
                )

        if not is_allowed(practice.state, target_state):
            logger.warning(
                "Transición rechazada para %s: %s -> %s",
                practice_id,
                practice.state.value,
                target_state.value,
            )
            raise InvalidTransitionError(practice_id, practice.state, target_state)

        validation = self._check_preconditions(practice, target_state, actor, reason)

        final_acta: Optional[FinalActa] = None
        if target_state is PracticeState.CERRADA:
            final_acta = self._build_final_acta(practice, actor, comments)

        updated = self._apply(practice, target_state, reason, final_acta)
        try:
            stored = self.store.save_practice(
                updated,
                expected_version=practice.version,
                final_acta=final_acta,
            )
        except ConflictError:
            if target_state is PracticeState.CERRADA:
                winner = self.store.get_final_acta(practice_id)
                if winner is not None:
                    logger.info("Cierre concurrente de %s: se devuelve el acta ganadora", practice_id)
                    return TransitionResult(
                        practice=self.store.get_practice(practice_id),
                        previous_state=practice.state,
                        final_acta=winner,
                        idempotent=True,
                    )
            logger.warning("Conflicto de versión en %s (v%s)", practice_id, practice.version)
            raise

        logger.info(
            "Práctica %s: %s -> %s por %s (%s)",
            practice_id,
            practice.state.value,
            stored.state.value,
            actor.actor_id,
            actor.role.value,
        )

        payload: Dict[str, Any] = {
            "from": practice.state.value,
            "to": stored.state.value,
            "version": stored.version,
            "reason": reason,
            "comments": comments,
        }
        if final_acta is not None:
            payload.update(
                final_acta_id=final_acta.id,
                nota_ponderada=final_acta.nota_ponderada,
                fingerprint=final_acta.fingerprint,
                weights_version=final_acta.weights_version,
            )
        entry_id = self._audit(ActionKind.STATE_TRANSITION, actor, practice_id, payload)
        warnings = list(validation.warnings)
        if entry_id is None:
            warnings.append("La transición se aplicó pero no quedó registrada en auditoría")

        event_kind = MILESTONE_EVENTS.get(stored.state)
        if event_kind is not None:
            data: Dict[str, Any] = {"motivo": reason}
            if final_acta is not None:
                data["nota_ponderada"] = final_acta.nota_ponderada
            self._notify(NotificationEvent.for_practice(event_kind, practice_id, actor=actor, **data))

        return TransitionResult(
            practice=stored,
            previous_state=practice.state,
            final_acta=final_acta,
            audit_entry_id=entry_id,
            warnings=tuple(warnings),
        )

    def _check_preconditions(
        self,
        practice: Practice,
        target: PracticeState,
        actor: ActorContext,
        reason: Optional[str],
    ) -> ValidationResult:
        validation = validate_transition(
            TransitionRequest(practice=practice, target=target, actor=actor, reason=reason)
        )
        if not validation.ok():
            raise PreconditionFailedError(
                "; ".join(validation.errors),
                context={
                    "practice_id": practice.id,
                    "from": practice.state.value,
                    "to": target.value,
                    "errors": list(validation.errors),
                },
            )
        return validation

    def _apply(
        self,
        practice: Practice,
        target: PracticeState,
        reason: Optional[str],
        final_acta: Optional[FinalActa],
    ) -> Practice:
        changes: Dict[str, Any] = {"state": target, "updated_at": self.clock()}
        if target is PracticeState.RECHAZADA_DOCENTE:
            changes["rejection_reason"] = reason.strip()
        elif target is PracticeState.PENDIENTE_ACEPTACION_DOCENTE:
            changes["rejection_reason"] = None
            changes["acta1_submitted_at"] = changes["updated_at"]
        elif target is PracticeState.ANULADA:
            changes["cancellation_reason"] = reason.strip()
        if final_acta is not None:
            changes["final_acta_id"] = final_acta.id
        updated = replace(practice, **changes)
        errors = updated.consistency_errors()
        if errors:
            raise PreconditionFailedError(
                "; ".join(errors), context={"practice_id": practice.id, "errors": errors}
            )
        return updated

    def _build_final_acta(
        self,
        practice: Practice,
        actor: ActorContext,
        comments: Optional[str],
    ) -> FinalActa:
        informe = self.store.get_evaluation(practice.supervisor_evaluation_id)
        empleador = self.store.get_evaluation(practice.employer_evaluation_id)
        weights = self.weights.current()
        nota_ponderada = compute_final_grade(informe.grade, empleador.grade, weights)
        return FinalActa(
            id=self._new_id(),
            practice_id=practice.id,
            nota_informe=informe.grade,
            nota_empleador=empleador.grade,
            nota_base=compute_base_grade(informe.grade, empleador.grade),
            nota_ponderada=nota_ponderada,
            informe_weight=weights.informe_weight,
            empleador_weight=weights.empleador_weight,
            weights_version=weights.version,
            closed_at=self.clock(),
            closed_by=actor.actor_id,
            fingerprint=grading_fingerprint(informe.grade, empleador.grade, weights, nota_ponderada),
            comments=comments,
            metadata={
                "informe_evaluation_id": informe.id,
                "empleador_evaluation_id": empleador.id,
            },
        )

    # ------------------------------------------------------------------
    # Evaluaciones
    # ------------------------------------------------------------------
    def submit_evaluation(
        self,
        practice_id: str,
        author_role: EvaluationAuthor,
        grade: Any,
        actor: ActorContext,
        *,
        comments: Optional[str] = None,
    ) -> Evaluation:
        """Record (or re-record) the supervisor's or employer's grade.

        Allowed while the practice is ``FINALIZADA_PENDIENTE_EVAL`` or
        ``EVALUACION_COMPLETA``.  A re-submission creates a new revision and
        swaps the reference; the previous evaluation is kept untouched.
        """

        author_role = EvaluationAuthor(author_role)
        validated = validate_grade(grade, field=f"nota de {author_role.value.lower()}")
        practice = self.store.get_practice(practice_id)

        if not practice.state.accepts_evaluations:
            raise PreconditionFailedError(
                f"La práctica en estado {practice.state.value} no admite evaluaciones",
                context={"practice_id": practice_id, "state": practice.state.value},
            )
        self._check_evaluator(practice, author_role, actor)

        previous_id = practice.evaluation_id_for(author_role)
        revision = 1
        if previous_id:
            revision = self.store.get_evaluation(previous_id).revision + 1

        evaluation = Evaluation(
            id=self._new_id(),
            practice_id=practice_id,
            author_role=author_role,
            author_id=actor.actor_id,
            grade=float(validated),
            submitted_at=self.clock(),
            comments=comments,
            revision=revision,
        )
        if author_role is EvaluationAuthor.DOCENTE:
            updated = replace(practice, supervisor_evaluation_id=evaluation.id, updated_at=self.clock())
        else:
            updated = replace(practice, employer_evaluation_id=evaluation.id, updated_at=self.clock())

        stored = self.store.save_practice(
            updated,
            expected_version=practice.version,
            evaluation=evaluation,
        )
        logger.info(
            "Evaluación %s de %s registrada para %s (revisión %s)",
            evaluation.id,
            author_role.value,
            practice_id,
            revision,
        )
        self._audit(
            ActionKind.EVALUATION_SUBMITTED,
            actor,
            practice_id,
            {
                "evaluation_id": evaluation.id,
                "author_role": author_role.value,
                "grade": evaluation.grade,
                "revision": revision,
                "replaces": previous_id,
            },
        )

        if (
            self.auto_complete_evaluations
            and stored.state is PracticeState.FINALIZADA_PENDIENTE_EVAL
            and stored.has_both_evaluations
        ):
            self._complete_evaluations(practice_id)
        return evaluation

    def _check_evaluator(
        self,
        practice: Practice,
        author_role: EvaluationAuthor,
        actor: ActorContext,
    ) -> None:
        if actor.role in _EVALUATION_STAFF:
            return
        if author_role is EvaluationAuthor.DOCENTE:
            allowed = actor.role is Role.DOCENTE and actor.actor_id == practice.supervisor_id
        else:
            allowed = actor.role is Role.EMPLEADOR and actor.actor_id == practice.employer_id
        if not allowed:
            raise PreconditionFailedError(
                f"{actor.role.value} {actor.actor_id} no puede registrar la evaluación de {author_role.value}",
                context={"practice_id": practice.id, "actor_id": actor.actor_id},
            )

    def _complete_evaluations(self, practice_id: str) -> None:
        try:
            self.request_transition(practice_id, PracticeState.EVALUACION_COMPLETA, ActorContext.system())
        except (ConflictError, InvalidTransitionError) as exc:
            # Otra operación ya movió la práctica; no afecta a la evaluación guardada.
            logger.warning("No se pudo completar automáticamente %s: %s", practice_id, exc)

    def evaluations(self, practice_id: str) -> List[Evaluation]:
        """Todas las revisiones registradas, en orden de entrega."""

        return self.store.list_evaluations(practice_id)

    # ------------------------------------------------------------------
    # Historial
    # ------------------------------------------------------------------
    def history(self, practice_id: str) -> List[AuditLogEntry]:
        audit_filter = AuditFilter.for_kinds(
            [ActionKind.STATE_TRANSITION],
            subject_type=PRACTICE_SUBJECT,
            subject_id=practice_id,
        )
        return list(self.ledger.query(audit_filter))

    # ------------------------------------------------------------------
    # Auditoría y notificaciones
    # ------------------------------------------------------------------
    def _audit(
        self,
        kind: ActionKind,
        actor: ActorContext,
        practice_id: str,
        payload: Mapping[str, Any],
    ) -> Optional[int]:
        try:
            return self.ledger.append(
                kind,
                actor_id=actor.actor_id,
                actor_role=actor.role,
                subject_type=PRACTICE_SUBJECT,
                subject_id=practice_id,
                payload=payload,
            )
        except AuditWriteFailedError as exc:
            self.on_audit_failure(exc)
            return None

    def _notify(self, event: NotificationEvent) -> None:
        if self.dispatcher is None:
            return
        if self.executor is None:
            self._dispatch_safely(event)
            return
        try:
            self.executor.submit(self._dispatch_safely, event)
        except RuntimeError as exc:
            # Executor cerrado: se pierde el aviso, nunca la transición.
            logger.error("No se pudo encolar la notificación %s: %s", event.kind.value, exc)

    def _dispatch_safely(self, event: NotificationEvent) -> Optional[DispatchOutcome]:
        try:
            return self.dispatcher.dispatch(event)
        except Exception:
            logger.exception(
                "Fallo al despachar %s para %s %s",
                event.kind.value,
                event.subject_type.value,
                event.subject_id,
            )
            return None
