"""Helpers para calcular métricas de notificaciones a partir del libro de auditoría.

El despachador de notificaciones invoca estas funciones con las vistas
:class:`~data.models.audit.NotificationRecord` de sus entradas.  Separar los
cálculos en este módulo permite que los tableros (coordinador, docente)
reutilicen las mismas reglas sin depender del servicio.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Dict, Iterable, Optional

from core.config import STATISTICS_WEEK_DAYS
from core.utils import to_utc
from data.models.audit import NotificationRecord
from grading import round_half_up

__all__ = [
    "DailySummary",
    "NotificationStatistics",
    "TimeWindow",
    "calculate_daily_summary",
    "calculate_notification_statistics",
    "success_rate",
]


@dataclass(slots=True, frozen=True)
class TimeWindow:
    """Intervalo ``[since, until)``; cualquiera de los extremos puede quedar abierto."""

    since: Optional[datetime] = None
    until: Optional[datetime] = None

    @classmethod
    def day_of(cls, moment: datetime) -> "TimeWindow":
        start = _start_of_day(moment)
        return cls(since=start, until=start + timedelta(days=1))

    @classmethod
    def last_days(cls, moment: datetime, days: int = STATISTICS_WEEK_DAYS) -> "TimeWindow":
        """Desde ``days`` días antes del inicio de hoy hasta el fin de hoy."""

        start = _start_of_day(moment)
        return cls(since=start - timedelta(days=days), until=start + timedelta(days=1))

    def contains(self, moment: datetime) -> bool:
        moment = to_utc(moment)
        if self.since is not None and moment < to_utc(self.since):
            return False
        if self.until is not None and moment >= to_utc(self.until):
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "since": self.since.isoformat() if self.since else None,
            "until": self.until.isoformat() if self.until else None,
        }


def _start_of_day(moment: datetime) -> datetime:
    moment = to_utc(moment)
    return datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)


@dataclass(slots=True, frozen=True)
class NotificationStatistics:
    """Conteos de intentos de envío y su tasa de éxito (porcentaje, 1 decimal)."""

    sent: int
    failed: int
    total: int
    success_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "total": self.total,
            "success_rate": self.success_rate,
        }


@dataclass(slots=True, frozen=True)
class DailySummary:
    """Resumen del tablero de notificaciones: hoy y la última semana."""

    today: NotificationStatistics
    week: NotificationStatistics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enviadas_hoy": self.today.total,
            "exitosas_hoy": self.today.sent,
            "fallidas_hoy": self.today.failed,
            "total_semana": self.week.total,
            "tasa_exito": self.week.success_rate,
        }


def success_rate(successes: int, total: int) -> float:
    """``successes / total`` como porcentaje redondeado a un decimal; 0.0 sin datos."""

    if total <= 0:
        return 0.0
    return round_half_up(successes * 100 / total, 1)


def calculate_notification_statistics(
    records: Iterable[NotificationRecord],
    window: Optional[TimeWindow] = None,
) -> NotificationStatistics:
    sent = failed = 0
    for record in records:
        if window is not None and not window.contains(record.timestamp):
            continue
        if record.delivered:
            sent += 1
        else:
            failed += 1
    total = sent + failed
    return NotificationStatistics(
        sent=sent,
        failed=failed,
        total=total,
        success_rate=success_rate(sent, total),
    )


def calculate_daily_summary(
    records: Iterable[NotificationRecord],
    now: datetime,
    *,
    week_days: int = STATISTICS_WEEK_DAYS,
) -> DailySummary:
    materialised = list(records)
    return DailySummary(
        today=calculate_notification_statistics(materialised, TimeWindow.day_of(now)),
        week=calculate_notification_statistics(materialised, TimeWindow.last_days(now, week_days)),
    )
