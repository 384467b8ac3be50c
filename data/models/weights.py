"""Configuración de ponderación entre la nota del informe y la del empleador."""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from core.config import WEIGHT_TOTAL
from core.errors import WeightSumInvalidError


def _coerce_percentage(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise WeightSumInvalidError(
            f"{name} debe ser un entero entre 0 y {WEIGHT_TOTAL}",
            context={"field": name, "value": value},
        )
    number = int(value)
    if not 0 <= number <= WEIGHT_TOTAL:
        raise WeightSumInvalidError(
            f"{name} debe estar entre 0 y {WEIGHT_TOTAL}",
            context={"field": name, "value": number},
        )
    return number


@dataclass(slots=True, frozen=True)
class WeightConfig:
    """Par de porcentajes que siempre suma 100.

    Use :meth:`create` instead of the bare constructor: it is the only path
    that validates the invariant, and the registry never stores an instance
    built any other way.
    """

    informe_weight: int
    empleador_weight: int
    version: int = 0
    replaced_at: Optional[datetime] = None
    replaced_by: Optional[str] = None

    @classmethod
    def create(
        cls,
        informe_weight: Any,
        empleador_weight: Any,
        *,
        version: int = 0,
        replaced_at: Optional[datetime] = None,
        replaced_by: Optional[str] = None,
    ) -> "WeightConfig":
        informe = _coerce_percentage("informe_weight", informe_weight)
        empleador = _coerce_percentage("empleador_weight", empleador_weight)
        if informe + empleador != WEIGHT_TOTAL:
            raise WeightSumInvalidError(
                f"La suma de porcentajes debe ser {WEIGHT_TOTAL} (recibido {informe + empleador})",
                context={"informe_weight": informe, "empleador_weight": empleador},
            )
        return cls(
            informe_weight=informe,
            empleador_weight=empleador,
            version=version,
            replaced_at=replaced_at,
            replaced_by=replaced_by,
        )

    @property
    def is_default(self) -> bool:
        return self.version == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "informe_weight": self.informe_weight,
            "empleador_weight": self.empleador_weight,
            "version": self.version,
            "replaced_at": self.replaced_at.isoformat() if self.replaced_at else None,
            "replaced_by": self.replaced_by,
        }


__all__ = ["WeightConfig"]
