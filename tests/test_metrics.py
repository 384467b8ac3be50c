"""Pruebas para las métricas de notificaciones."""

from datetime import datetime, timezone

import pytest

from data.models.audit import NotificationRecord
from metrics import (
    TimeWindow,
    calculate_daily_summary,
    calculate_notification_statistics,
    success_rate,
)

UTC = timezone.utc


def _record(entry_id, timestamp, delivered=True):
    return NotificationRecord(
        entry_id=entry_id,
        timestamp=timestamp,
        recipient_id="alu-1",
        recipient_address="camila@alumnos.cl",
        message_kind="RECORDATORIO",
        subject="Recordatorio de práctica",
        delivered=delivered,
        error=None if delivered else "timeout",
        subject_type="Practica",
        subject_id="p-1",
    )


@pytest.mark.parametrize(
    "successes, total, expected",
    [
        (0, 0, 0.0),
        (3, 0, 0.0),
        (2, 3, 66.7),
        (1, 3, 33.3),
        (1, 8, 12.5),
        (5, 5, 100.0),
    ],
)
def test_success_rate(successes, total, expected):
    assert success_rate(successes, total) == expected


def test_statistics_respect_window():
    records = [
        _record(1, datetime(2024, 6, 30, 23, 59, tzinfo=UTC)),
        _record(2, datetime(2024, 7, 1, 0, 0, tzinfo=UTC), delivered=False),
        _record(3, datetime(2024, 7, 1, 18, 0, tzinfo=UTC)),
        _record(4, datetime(2024, 7, 2, 0, 0, tzinfo=UTC)),
    ]
    window = TimeWindow.day_of(datetime(2024, 7, 1, 12, 0, tzinfo=UTC))

    stats = calculate_notification_statistics(records, window)

    assert (stats.sent, stats.failed, stats.total) == (1, 1, 2)
    assert stats.success_rate == 50.0


def test_last_days_window_spans_the_whole_week_and_today():
    window = TimeWindow.last_days(datetime(2024, 7, 8, 15, 30, tzinfo=UTC), days=7)

    assert window.since == datetime(2024, 7, 1, tzinfo=UTC)
    assert window.until == datetime(2024, 7, 9, tzinfo=UTC)
    assert window.contains(datetime(2024, 7, 1, tzinfo=UTC))
    assert not window.contains(datetime(2024, 7, 9, tzinfo=UTC))


def test_naive_timestamps_are_treated_as_utc():
    window = TimeWindow.day_of(datetime(2024, 7, 1, 12, 0, tzinfo=UTC))

    assert window.contains(datetime(2024, 7, 1, 8, 0))


def test_open_window_contains_everything():
    assert TimeWindow().contains(datetime(1999, 1, 1, tzinfo=UTC))
    assert TimeWindow().to_dict() == {"since": None, "until": None}


def test_daily_summary_keys():
    now = datetime(2024, 7, 3, 10, 0, tzinfo=UTC)
    records = [
        _record(1, datetime(2024, 7, 3, 9, 0, tzinfo=UTC)),
        _record(2, datetime(2024, 7, 3, 9, 5, tzinfo=UTC), delivered=False),
        _record(3, datetime(2024, 6, 28, 9, 0, tzinfo=UTC)),
        _record(4, datetime(2024, 6, 1, 9, 0, tzinfo=UTC)),
    ]

    summary = calculate_daily_summary(records, now)

    assert summary.to_dict() == {
        "enviadas_hoy": 2,
        "exitosas_hoy": 1,
        "fallidas_hoy": 1,
        "total_semana": 3,
        "tasa_exito": 66.7,
    }
