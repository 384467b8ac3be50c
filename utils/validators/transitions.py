"""Precondiciones de cada estado destino del ciclo de vida de la práctica."""

from __future__ import annotations

from data.models.practice import PracticeState, Role

from . import register_validator
from .base import (
    TransitionRequest,
    ValidationResult,
    check_assigned_supervisor,
    check_both_evaluations,
    check_reason,
    check_role,
)

_STAFF = frozenset({Role.COORDINADOR, Role.DIRECTOR, Role.ADMIN})


def validate_pending_acceptance(request: TransitionRequest) -> ValidationResult:
    """Acta 1 enviada: la práctica necesita docente y centro de práctica."""

    result = ValidationResult()
    check_role(result, request, _STAFF | {Role.ALUMNO})
    if request.actor.role is Role.ALUMNO and request.actor.actor_id != request.practice.student_id:
        result.errors.append("El alumno solo puede enviar el acta 1 de su propia práctica")
    if not request.practice.supervisor_id:
        result.errors.append("La práctica no tiene docente supervisor asignado")
    if not request.practice.host_organization_id:
        result.errors.append("La práctica no tiene centro de práctica asignado")
    if request.source is PracticeState.RECHAZADA_DOCENTE:
        result.warnings.append("Reenvío del acta 1 tras un rechazo del docente")
    return result


def validate_in_progress(request: TransitionRequest) -> ValidationResult:
    result = ValidationResult()
    check_role(result, request, _STAFF | {Role.DOCENTE})
    check_assigned_supervisor(result, request)
    if request.source is PracticeState.FINALIZADA_PENDIENTE_EVAL and request.practice.has_any_evaluation:
        result.errors.append("No se puede reabrir una práctica que ya tiene evaluaciones registradas")
    return result


def validate_rejected(request: TransitionRequest) -> ValidationResult:
    result = ValidationResult()
    check_role(result, request, _STAFF | {Role.DOCENTE})
    check_assigned_supervisor(result, request)
    check_reason(result, request)
    return result


def validate_finished(request: TransitionRequest) -> ValidationResult:
    result = ValidationResult()
    check_role(result, request, _STAFF | {Role.ALUMNO, Role.DOCENTE, Role.SISTEMA})
    if request.actor.role is Role.ALUMNO and request.actor.actor_id != request.practice.student_id:
        result.errors.append("El alumno solo puede finalizar su propia práctica")
    return result


def validate_evaluation_complete(request: TransitionRequest) -> ValidationResult:
    result = ValidationResult()
    check_role(result, request, _STAFF | {Role.DOCENTE, Role.SISTEMA})
    check_both_evaluations(result, request)
    return result


def validate_closed(request: TransitionRequest) -> ValidationResult:
    result = ValidationResult()
    check_role(result, request, _STAFF | {Role.DOCENTE})
    check_assigned_supervisor(result, request)
    check_both_evaluations(result, request)
    return result


def validate_cancelled(request: TransitionRequest) -> ValidationResult:
    result = ValidationResult()
    check_role(result, request, _STAFF)
    check_reason(result, request)
    return result


register_validator(PracticeState.PENDIENTE_ACEPTACION_DOCENTE, validate_pending_acceptance)
register_validator(PracticeState.EN_CURSO, validate_in_progress)
register_validator(PracticeState.RECHAZADA_DOCENTE, validate_rejected)
register_validator(PracticeState.FINALIZADA_PENDIENTE_EVAL, validate_finished)
register_validator(PracticeState.EVALUACION_COMPLETA, validate_evaluation_complete)
register_validator(PracticeState.CERRADA, validate_closed)
register_validator(PracticeState.ANULADA, validate_cancelled)
