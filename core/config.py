# core/config.py
# Configuración compartida del núcleo de prácticas.

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

# =========================
# CONFIGURACIÓN GLOBAL
# =========================
LOG_LEVEL = os.getenv("PRACTICAS_LOG_LEVEL", "INFO").upper()

# =========================
# PONDERACIÓN DE EVALUACIONES
# =========================
# Valor por defecto mientras no se haya guardado ninguna configuración.
DEFAULT_INFORME_WEIGHT = 60
DEFAULT_EMPLEADOR_WEIGHT = 40
WEIGHT_TOTAL = 100

# Escala chilena de notas
GRADE_MIN = 1.0
GRADE_MAX = 7.0
GRADE_DECIMALS = 1

# =========================
# NOTIFICACIONES
# =========================
DISPATCH_MAX_WORKERS = 4
DISPATCH_TIMEOUT_SECONDS: Optional[float] = 30.0
NOTIFICATION_SENDER = "Sistema de Prácticas <practicas@instituto.edu>"
STATISTICS_WEEK_DAYS = 7

# =========================
# ALERTAS DE PLAZOS
# =========================
DIAS_GRACIA = 5                 # días tras la fecha de término antes de considerar atraso
DIAS_ALERTA_BAJO = 7            # días de retraso para criticidad BAJO
DIAS_ALERTA_CRITICO = 15        # días de retraso para criticidad CRITICO
PLAZO_ACTA_1 = 5                # días desde la fecha de inicio para completar el acta 1
PLAZO_ACEPTACION_DOCENTE = 5    # días desde el envío del acta 1 para que el docente acepte
DIAS_ALERTA_PREVIA = 1          # aviso antes del vencimiento del plazo
DIAS_ALERTA_TERMINO = 7         # aviso antes de la fecha de término
DIAS_ALERTA_INFORME = 3         # días tras el término sin nota del informe

# =========================
# AUDITORÍA
# =========================
AUDIT_PAGE_SIZE = 100


@dataclass(slots=True)
class CoreConfig:
    """Runtime overrides for the services of the core."""

    dispatch_max_workers: int = DISPATCH_MAX_WORKERS
    dispatch_timeout_seconds: Optional[float] = DISPATCH_TIMEOUT_SECONDS
    default_informe_weight: int = DEFAULT_INFORME_WEIGHT
    default_empleador_weight: int = DEFAULT_EMPLEADOR_WEIGHT
    dias_gracia: int = DIAS_GRACIA
    dias_alerta_bajo: int = DIAS_ALERTA_BAJO
    dias_alerta_critico: int = DIAS_ALERTA_CRITICO
    plazo_acta_1: int = PLAZO_ACTA_1
    plazo_aceptacion_docente: int = PLAZO_ACEPTACION_DOCENTE
    dias_alerta_previa: int = DIAS_ALERTA_PREVIA
    dias_alerta_termino: int = DIAS_ALERTA_TERMINO
    dias_alerta_informe: int = DIAS_ALERTA_INFORME
    statistics_week_days: int = STATISTICS_WEEK_DAYS
    log_level: str = LOG_LEVEL

    def with_overrides(self, **overrides: Any) -> "CoreConfig":
        data = {f.name: getattr(self, f.name) for f in fields(CoreConfig)}
        for key, value in overrides.items():
            if value is None or key not in data:
                continue
            data[key] = value
        return CoreConfig(**data)

    def dump(self) -> Dict[str, Any]:
        return asdict(self)
