"""Motor de la nota final ponderada.

El servicio de ciclo de vida invoca estas funciones al cerrar una práctica.
Los cálculos usan :class:`decimal.Decimal` para que la representación binaria
de los ``float`` nunca altere una decisión de redondeo: la misma entrada debe
producir siempre la misma nota, porque el acta se reconstruye desde la
auditoría.
"""

from __future__ import annotations

import math
import numbers
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict

from core.config import GRADE_DECIMALS, GRADE_MAX, GRADE_MIN, WEIGHT_TOTAL
from core.errors import InvalidGradeError
from core.utils import stable_mapping_hash
from data.models.weights import WeightConfig

__all__ = [
    "compute_base_grade",
    "compute_final_grade",
    "grading_fingerprint",
    "round_half_up",
    "validate_grade",
]

_QUANTUM = Decimal(1).scaleb(-GRADE_DECIMALS)


def round_half_up(value: Any, decimals: int = GRADE_DECIMALS) -> float:
    """Redondea ``value`` a ``decimals`` decimales con la regla half-up."""

    quantum = Decimal(1).scaleb(-decimals)
    return float(_as_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # ``str`` evita arrastrar la expansión binaria completa del float.
    if isinstance(value, (int, float, str)):
        return Decimal(str(value))
    return Decimal(str(float(value)))


def validate_grade(value: Any, *, field: str = "nota") -> Decimal:
    """Devuelve ``value`` como ``Decimal`` o lanza :class:`InvalidGradeError`."""

    if isinstance(value, bool) or not isinstance(value, (numbers.Real, Decimal)):
        raise InvalidGradeError(
            f"La {field} debe ser numérica",
            context={"field": field, "value": value},
        )
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidGradeError(
            f"La {field} debe ser un número finito",
            context={"field": field, "value": value},
        )
    grade = _as_decimal(value)
    if grade.is_nan() or not Decimal(str(GRADE_MIN)) <= grade <= Decimal(str(GRADE_MAX)):
        raise InvalidGradeError(
            f"La {field} debe estar entre {GRADE_MIN} y {GRADE_MAX}",
            context={"field": field, "value": float(grade) if not grade.is_nan() else value},
        )
    return grade


def compute_final_grade(informe_grade: Any, empleador_grade: Any, weights: WeightConfig) -> float:
    """Return ``notaPonderada`` for the two component grades.

    ``informe * w_informe / 100 + empleador * w_empleador / 100`` rounded
    half-up to one decimal.  Both grades are validated before anything is
    computed, e.g. ``(6.0, 5.0, 60/40) -> 5.6``.
    """

    informe = validate_grade(informe_grade, field="nota del informe")
    empleador = validate_grade(empleador_grade, field="nota del empleador")
    total = Decimal(WEIGHT_TOTAL)
    weighted = (
        informe * Decimal(weights.informe_weight) / total
        + empleador * Decimal(weights.empleador_weight) / total
    )
    return float(weighted.quantize(_QUANTUM, rounding=ROUND_HALF_UP))


def compute_base_grade(informe_grade: Any, empleador_grade: Any) -> float:
    """Promedio simple de ambas notas (referencia sin ponderar del acta)."""

    informe = validate_grade(informe_grade, field="nota del informe")
    empleador = validate_grade(empleador_grade, field="nota del empleador")
    mean = (informe + empleador) / Decimal(2)
    return float(mean.quantize(_QUANTUM, rounding=ROUND_HALF_UP))


def grading_fingerprint(
    informe_grade: Any,
    empleador_grade: Any,
    weights: WeightConfig,
    nota_ponderada: float,
) -> str:
    """Hash estable de las entradas y el resultado del cálculo."""

    payload: Dict[str, Any] = {
        "informe": str(_as_decimal(informe_grade).normalize()),
        "empleador": str(_as_decimal(empleador_grade).normalize()),
        "informe_weight": weights.informe_weight,
        "empleador_weight": weights.empleador_weight,
        "nota_ponderada": nota_ponderada,
    }
    return stable_mapping_hash(payload)
