"""Utilidades compartidas para los validadores de precondiciones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, List, Optional

from data.models.practice import ActorContext, Practice, PracticeState, Role


class ValidationResult:
    """Almacena errores de validación y advertencias para una transición."""

    def __init__(self) -> None:
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def ok(self) -> bool:
        return not self.errors

    def __bool__(self) -> bool:  # pragma: no cover - convenience
        return self.ok()


@dataclass(slots=True, frozen=True)
class TransitionRequest:
    """Datos cargados que un validador puede inspeccionar; no consulta el almacén."""

    practice: Practice
    target: PracticeState
    actor: ActorContext
    reason: Optional[str] = None

    @property
    def source(self) -> PracticeState:
        return self.practice.state


def check_role(result: ValidationResult, request: TransitionRequest, allowed: AbstractSet[Role]) -> None:
    """Registra un error cuando el rol del actor no está en ``allowed``."""

    if request.actor.role not in allowed:
        result.errors.append(
            f"El rol {request.actor.role.value} no puede llevar la práctica a {request.target.value}"
        )


def check_assigned_supervisor(result: ValidationResult, request: TransitionRequest) -> None:
    """Un DOCENTE solo actúa sobre las prácticas que supervisa."""

    if request.actor.role is Role.DOCENTE and request.actor.actor_id != request.practice.supervisor_id:
        result.errors.append("El docente no es el supervisor asignado a la práctica")


def check_reason(result: ValidationResult, request: TransitionRequest) -> None:
    if not (request.reason or "").strip():
        result.errors.append(f"{request.target.value} requiere un motivo")


def check_both_evaluations(result: ValidationResult, request: TransitionRequest) -> None:
    practice = request.practice
    if not practice.supervisor_evaluation_id:
        result.errors.append("Falta la evaluación del docente")
    if not practice.employer_evaluation_id:
        result.errors.append("Falta la evaluación del empleador")
