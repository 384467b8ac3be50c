"""Data structures describing practices, their evaluations and final actas.

This module centralises the schema shared by the lifecycle service, the grade
engine and the acta repository.  Every class offers a ``to_dict`` helper so
records can be serialised into JSON or handed to presentation layers.  Records
are immutable: the lifecycle service produces a new :class:`Practice` through
:func:`dataclasses.replace` for every accepted change and the store keeps the
``version`` counter used for optimistic concurrency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class PracticeType(str, Enum):
    LABORAL = "LABORAL"
    PROFESIONAL = "PROFESIONAL"


class PracticeState(str, Enum):
    PENDIENTE = "PENDIENTE"
    PENDIENTE_ACEPTACION_DOCENTE = "PENDIENTE_ACEPTACION_DOCENTE"
    RECHAZADA_DOCENTE = "RECHAZADA_DOCENTE"
    EN_CURSO = "EN_CURSO"
    FINALIZADA_PENDIENTE_EVAL = "FINALIZADA_PENDIENTE_EVAL"
    EVALUACION_COMPLETA = "EVALUACION_COMPLETA"
    CERRADA = "CERRADA"
    ANULADA = "ANULADA"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def accepts_evaluations(self) -> bool:
        """States in which evaluations may be submitted or re-submitted."""

        return self in EVALUABLE_STATES


TERMINAL_STATES = frozenset({PracticeState.CERRADA, PracticeState.ANULADA})

EVALUABLE_STATES = frozenset(
    {PracticeState.FINALIZADA_PENDIENTE_EVAL, PracticeState.EVALUACION_COMPLETA}
)

# Orden de avance del flujo normal, usado para "este estado o posterior".
STATE_ORDER: Dict[PracticeState, int] = {
    PracticeState.PENDIENTE: 0,
    PracticeState.PENDIENTE_ACEPTACION_DOCENTE: 1,
    PracticeState.RECHAZADA_DOCENTE: 1,
    PracticeState.EN_CURSO: 2,
    PracticeState.FINALIZADA_PENDIENTE_EVAL: 3,
    PracticeState.EVALUACION_COMPLETA: 4,
    PracticeState.CERRADA: 5,
}


def reached(state: PracticeState, milestone: PracticeState) -> bool:
    """Return ``True`` when ``state`` is ``milestone`` or a later stage.

    ``ANULADA`` never counts as having reached anything.
    """

    if state is PracticeState.ANULADA:
        return False
    return STATE_ORDER[state] >= STATE_ORDER[milestone]


class Role(str, Enum):
    ALUMNO = "ALUMNO"
    DOCENTE = "DOCENTE"
    EMPLEADOR = "EMPLEADOR"
    COORDINADOR = "COORDINADOR"
    DIRECTOR = "DIRECTOR"
    ADMIN = "ADMIN"
    SISTEMA = "SISTEMA"


class EvaluationAuthor(str, Enum):
    DOCENTE = "DOCENTE"
    EMPLEADOR = "EMPLEADOR"


@dataclass(slots=True, frozen=True)
class ActorContext:
    """Identity of the caller; already authenticated and authorised upstream."""

    actor_id: str
    role: Role
    display_name: Optional[str] = None

    @classmethod
    def system(cls) -> "ActorContext":
        return cls(actor_id="sistema", role=Role.SISTEMA, display_name="Sistema")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "role": self.role.value,
            "display_name": self.display_name,
        }


@dataclass(slots=True, frozen=True)
class Person:
    """Directory entry used to resolve recipients and search by student."""

    id: str
    name: str
    email: Optional[str] = None
    role: Optional[Role] = None
    rut: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value if self.role else None,
            "rut": self.rut,
        }


@dataclass(slots=True, frozen=True)
class Practice:
    """One student's internship engagement, tracked by the state machine."""

    id: str
    type: PracticeType
    student_id: str
    start_date: date
    end_date: date
    state: PracticeState = PracticeState.PENDIENTE
    program_id: Optional[str] = None
    site_id: Optional[str] = None
    supervisor_id: Optional[str] = None
    employer_id: Optional[str] = None
    host_organization_id: Optional[str] = None
    supervisor_evaluation_id: Optional[str] = None
    employer_evaluation_id: Optional[str] = None
    final_acta_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    acta1_submitted_at: Optional[datetime] = None
    version: int = 0
    updated_at: Optional[datetime] = None

    @property
    def has_both_evaluations(self) -> bool:
        return bool(self.supervisor_evaluation_id and self.employer_evaluation_id)

    @property
    def has_any_evaluation(self) -> bool:
        return bool(self.supervisor_evaluation_id or self.employer_evaluation_id)

    @property
    def academic_year(self) -> int:
        return self.start_date.year

    @property
    def semester(self) -> int:
        """Semestre académico según el mes de inicio (1: ene-jul, 2: ago-dic)."""

        return 1 if self.start_date.month <= 7 else 2

    def evaluation_id_for(self, author: EvaluationAuthor) -> Optional[str]:
        if author is EvaluationAuthor.DOCENTE:
            return self.supervisor_evaluation_id
        return self.employer_evaluation_id

    def consistency_errors(self) -> List[str]:
        """Describe every way the state disagrees with the stored references."""

        errors: List[str] = []
        if self.state in (PracticeState.EVALUACION_COMPLETA, PracticeState.CERRADA):
            if not self.has_both_evaluations:
                errors.append(f"{self.state.value} requiere ambas evaluaciones")
        if self.state is PracticeState.CERRADA and not self.final_acta_id:
            errors.append("CERRADA requiere acta final")
        if self.state is not PracticeState.CERRADA and self.final_acta_id:
            errors.append("solo una práctica CERRADA tiene acta final")
        if (
            self.state is not PracticeState.ANULADA
            and not reached(self.state, PracticeState.FINALIZADA_PENDIENTE_EVAL)
            and self.has_any_evaluation
        ):
            errors.append(f"{self.state.value} no admite evaluaciones registradas")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "state": self.state.value,
            "student_id": self.student_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "program_id": self.program_id,
            "site_id": self.site_id,
            "supervisor_id": self.supervisor_id,
            "employer_id": self.employer_id,
            "host_organization_id": self.host_organization_id,
            "supervisor_evaluation_id": self.supervisor_evaluation_id,
            "employer_evaluation_id": self.employer_evaluation_id,
            "final_acta_id": self.final_acta_id,
            "rejection_reason": self.rejection_reason,
            "cancellation_reason": self.cancellation_reason,
            "acta1_submitted_at": self.acta1_submitted_at.isoformat() if self.acta1_submitted_at else None,
            "version": self.version,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(slots=True, frozen=True)
class Evaluation:
    """Nota entregada por el docente (informe) o por el empleador."""

    id: str
    practice_id: str
    author_role: EvaluationAuthor
    author_id: str
    grade: float
    submitted_at: datetime
    comments: Optional[str] = None
    revision: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "author_role": self.author_role.value,
            "author_id": self.author_id,
            "grade": self.grade,
            "comments": self.comments,
            "submitted_at": self.submitted_at.isoformat(),
            "revision": self.revision,
        }


@dataclass(slots=True, frozen=True)
class FinalActa:
    """Acta final: se crea una sola vez al cerrar la práctica."""

    id: str
    practice_id: str
    nota_informe: float
    nota_empleador: float
    nota_base: float
    nota_ponderada: float
    informe_weight: int
    empleador_weight: int
    weights_version: int
    closed_at: datetime
    closed_by: str
    fingerprint: str
    comments: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "nota_informe": self.nota_informe,
            "nota_empleador": self.nota_empleador,
            "nota_base": self.nota_base,
            "nota_ponderada": self.nota_ponderada,
            "informe_weight": self.informe_weight,
            "empleador_weight": self.empleador_weight,
            "weights_version": self.weights_version,
            "closed_at": self.closed_at.isoformat(),
            "closed_by": self.closed_by,
            "fingerprint": self.fingerprint,
            "comments": self.comments,
            "metadata": dict(self.metadata),
        }


__all__ = [
    "ActorContext",
    "EVALUABLE_STATES",
    "Evaluation",
    "EvaluationAuthor",
    "FinalActa",
    "Person",
    "Practice",
    "PracticeState",
    "PracticeType",
    "Role",
    "STATE_ORDER",
    "TERMINAL_STATES",
    "reached",
]
