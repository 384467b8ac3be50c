"""Errores estructurados del núcleo de prácticas.

Cada excepción expone ``kind`` (un :class:`ErrorKind`) y ``context`` (un
diccionario con los datos del caso) para que los llamadores puedan bifurcar
según el tipo sin depender del texto del mensaje.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CONFLICT = "CONFLICT"
    INVALID_GRADE = "INVALID_GRADE"
    WEIGHT_SUM_INVALID = "WEIGHT_SUM_INVALID"
    AUDIT_WRITE_FAILED = "AUDIT_WRITE_FAILED"
    DISPATCH_FAILED = "DISPATCH_FAILED"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CREDENTIAL_ERROR = "CREDENTIAL_ERROR"


class PracticasError(RuntimeError):
    """Base de todos los errores del núcleo."""

    kind: ErrorKind = ErrorKind.PRECONDITION_FAILED

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "context": dict(self.context),
        }


class InvalidTransitionError(PracticasError):
    """El par (estado actual, estado destino) no está en la tabla de transiciones."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, practice_id: Any, current: Any, target: Any) -> None:
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"No se puede cambiar de {current_value} a {target_value}",
            context={"practice_id": practice_id, "from": current_value, "to": target_value},
        )


class ConflictError(PracticasError):
    """Otra escritura ganó la carrera; se debe releer y reintentar."""

    kind = ErrorKind.CONFLICT

    def __init__(
        self,
        subject_id: Any,
        *,
        expected_version: int,
        actual_version: Optional[int],
        entity: str = "práctica",
    ) -> None:
        key = "practice_id" if entity == "práctica" else "subject_id"
        super().__init__(
            f"La {entity} {subject_id} fue modificada por otra operación",
            context={
                key: subject_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )

    @property
    def retryable(self) -> bool:
        return True


class InvalidGradeError(PracticasError, ValueError):
    kind = ErrorKind.INVALID_GRADE


class WeightSumInvalidError(PracticasError, ValueError):
    kind = ErrorKind.WEIGHT_SUM_INVALID


class AuditWriteFailedError(PracticasError):
    kind = ErrorKind.AUDIT_WRITE_FAILED


class DispatchFailedError(PracticasError):
    """Fallo de envío para un destinatario; se registra, no se propaga a la transición."""

    kind = ErrorKind.DISPATCH_FAILED


class PreconditionFailedError(PracticasError):
    kind = ErrorKind.PRECONDITION_FAILED


class NotFoundError(PracticasError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} '{entity_id}' no encontrada",
            context={"entity": entity, "entity_id": entity_id},
        )


class CredentialError(PracticasError):
    kind = ErrorKind.CREDENTIAL_ERROR


__all__ = [
    "AuditWriteFailedError",
    "ConflictError",
    "CredentialError",
    "DispatchFailedError",
    "ErrorKind",
    "InvalidGradeError",
    "InvalidTransitionError",
    "NotFoundError",
    "PracticasError",
    "PreconditionFailedError",
    "WeightSumInvalidError",
]
