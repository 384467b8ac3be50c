import threading
from datetime import date, datetime, timezone

import pytest

from core.config import CoreConfig
from core.errors import NotFoundError, PreconditionFailedError
from data.models.audit import ActionKind, AuditFilter
from data.models.practice import PracticeState
from services.alert_service import AlertService, Criticality, ReminderReason, classify_delay

from conftest import COORDINATOR, seed_practice

S = PracticeState


@pytest.mark.parametrize(
    "days_late, expected",
    [
        (0, Criticality.NORMAL),
        (6, Criticality.NORMAL),
        (7, Criticality.BAJO),
        (14, Criticality.BAJO),
        (15, Criticality.CRITICO),
        (40, Criticality.CRITICO),
    ],
)
def test_classify_delay_thresholds(days_late, expected) -> None:
    assert classify_delay(days_late) is expected


def test_classify_delay_uses_config() -> None:
    config = CoreConfig().with_overrides(dias_alerta_bajo=2, dias_alerta_critico=4, dias_gracia=None)

    assert config.dias_gracia == 5
    assert classify_delay(3, config=config) is Criticality.BAJO
    assert classify_delay(4, config=config) is Criticality.CRITICO


@pytest.fixture
def alerts(store, dispatcher, clock) -> AlertService:
    # Hoy es 2024-07-01.
    seed_practice(store, S.EN_CURSO, practice_id="p-1", end_date=date(2024, 6, 25))
    seed_practice(store, S.EN_CURSO, practice_id="p-2", end_date=date(2024, 6, 24))
    seed_practice(store, S.FINALIZADA_PENDIENTE_EVAL, practice_id="p-3", end_date=date(2024, 6, 16))
    seed_practice(store, S.CERRADA, practice_id="p-4", end_date=date(2024, 5, 1))
    seed_practice(
        store,
        S.PENDIENTE,
        practice_id="p-5",
        start_date=date(2024, 6, 27),
        end_date=date(2024, 12, 20),
    )
    seed_practice(
        store,
        S.PENDIENTE,
        practice_id="p-6",
        start_date=date(2024, 6, 30),
        end_date=date(2024, 12, 20),
    )
    return AlertService(store, dispatcher, clock=clock)


def test_overdue_practices_exclude_terminal_states(alerts) -> None:
    overdue = alerts.overdue_practices()

    assert [(item.practice.id, item.days_late, item.criticality) for item in overdue] == [
        ("p-3", 15, Criticality.CRITICO),
        ("p-2", 7, Criticality.BAJO),
        ("p-1", 6, Criticality.NORMAL),
    ]


@pytest.mark.parametrize(
    "end_date, flagged",
    [
        (date(2024, 6, 30), False),
        (date(2024, 6, 26), False),  # 5 días: dentro del período de gracia
        (date(2024, 6, 25), True),
    ],
)
def test_overdue_waits_for_grace_period(store, clock, end_date, flagged) -> None:
    seed_practice(store, S.EN_CURSO, end_date=end_date)

    overdue = AlertService(store, clock=clock).overdue_practices()

    assert bool(overdue) is flagged


def test_grace_period_comes_from_config(store, clock) -> None:
    seed_practice(store, S.EN_CURSO, end_date=date(2024, 6, 30))

    overdue = AlertService(store, clock=clock, config=CoreConfig(dias_gracia=0)).overdue_practices()

    assert [(item.practice.id, item.days_late) for item in overdue] == [("p-1", 1)]


def test_expiring_acta1_uses_deadline_from_start_date(alerts) -> None:
    expiring = alerts.expiring_acta1()

    assert [item.to_dict() for item in expiring] == [
        {"practice_id": "p-5", "reason": "ACTA1_POR_EXPIRAR", "deadline": "2024-07-02", "days_remaining": 1}
    ]


@pytest.mark.parametrize(
    "submitted, days_remaining",
    [
        (datetime(2024, 6, 26, 18, 0, tzinfo=timezone.utc), 0),
        (datetime(2024, 6, 27, 9, 0, tzinfo=timezone.utc), 1),
        (datetime(2024, 6, 28, 9, 0, tzinfo=timezone.utc), None),
        (None, None),
    ],
)
def test_expiring_acceptance_counts_from_acta1_submission(store, clock, submitted, days_remaining) -> None:
    seed_practice(
        store,
        S.PENDIENTE_ACEPTACION_DOCENTE,
        end_date=date(2024, 12, 20),
        acta1_submitted_at=submitted,
    )

    expiring = AlertService(store, clock=clock).expiring_acceptance()

    if days_remaining is None:
        assert expiring == []
    else:
        assert [(item.reason, item.days_remaining) for item in expiring] == [
            (ReminderReason.ACEPTACION_POR_EXPIRAR, days_remaining)
        ]


def test_submitting_acta1_records_the_acceptance_clock(machine, store, clock) -> None:
    seed_practice(store, S.PENDIENTE, end_date=date(2024, 12, 20))
    machine.request_transition("p-1", S.PENDIENTE_ACEPTACION_DOCENTE, COORDINATOR)

    assert store.get_practice("p-1").acta1_submitted_at == clock()
    clock.advance(days=4)
    [item] = AlertService(store, clock=clock).expiring_acceptance()
    assert item.deadline == date(2024, 7, 6)
    assert item.days_remaining == 1


@pytest.mark.parametrize(
    "end_date, flagged",
    [
        (date(2024, 7, 1), True),
        (date(2024, 7, 8), True),
        (date(2024, 7, 9), False),
        (date(2024, 6, 30), False),
    ],
)
def test_practices_ending_within_a_week(store, clock, end_date, flagged) -> None:
    seed_practice(store, S.EN_CURSO, end_date=end_date)

    milestones = AlertService(store, clock=clock).upcoming_milestones()

    assert [item.reason for item in milestones] == ([ReminderReason.TERMINO_PROXIMO] if flagged else [])


@pytest.mark.parametrize(
    "end_date, evaluated, flagged",
    [
        (date(2024, 6, 28), False, True),
        (date(2024, 6, 29), False, False),
        (date(2024, 6, 1), True, False),
    ],
)
def test_report_pending_after_three_days(store, clock, end_date, evaluated, flagged) -> None:
    overrides = {"supervisor_evaluation_id": "e-1"} if evaluated else {}
    seed_practice(store, S.FINALIZADA_PENDIENTE_EVAL, end_date=end_date, **overrides)

    milestones = AlertService(store, clock=clock).upcoming_milestones()

    assert [item.reason for item in milestones] == ([ReminderReason.INFORME_PENDIENTE] if flagged else [])


def test_summary_counts(alerts) -> None:
    assert alerts.summary() == {
        "total": 3,
        "criticas": 1,
        "bajas": 1,
        "normales": 1,
        "acta1_por_expirar": 1,
        "aceptacion_por_expirar": 0,
        "termino_proximo": 0,
        "informe_pendiente": 1,
    }


def test_reminders_are_sent_once_per_day(alerts, ledger, clock, transport) -> None:
    outcomes = alerts.send_reminders()

    assert [outcome.event.subject_id for outcome in outcomes] == ["p-3", "p-2", "p-1", "p-5"]
    assert all(outcome.all_delivered for outcome in outcomes)
    assert outcomes[0].event.data["criticidad"] == "CRITICO"
    assert outcomes[0].event.data["motivos"] == ("PRACTICA_ATRASADA", "INFORME_PENDIENTE")
    assert outcomes[-1].event.data["motivo"] == "ACTA1_POR_EXPIRAR"
    assert len(transport.sent) == 8

    assert alerts.send_reminders() == []

    clock.advance(days=1)
    assert len(alerts.send_reminders()) == 4
    sent = ledger.count(AuditFilter.for_kinds([ActionKind.NOTIFICATION_SENT]))
    assert sent == 16


def test_reminders_honour_cancellation(alerts, transport) -> None:
    cancel = threading.Event()
    cancel.set()

    assert alerts.send_reminders(cancel=cancel) == []
    assert transport.sent == []


def test_reminders_need_a_dispatcher(store, clock) -> None:
    with pytest.raises(RuntimeError):
        AlertService(store, clock=clock).send_reminders()


def test_manual_alert_reaches_the_student(alerts, transport) -> None:
    outcome = alerts.send_alert("p-2", "  Sube tu informe esta semana.  ", COORDINATOR)

    assert outcome.all_delivered
    [(recipient, content)] = transport.sent
    assert recipient.address == "camila@alumnos.cl"
    assert content.subject == "Alerta de Práctica"
    assert "Sube tu informe esta semana." in content.body
    assert "Lucía Vera" in content.body


def test_manual_alert_validation(alerts, transport) -> None:
    with pytest.raises(PreconditionFailedError):
        alerts.send_alert("p-2", "   ", COORDINATOR)
    with pytest.raises(NotFoundError):
        alerts.send_alert("p-404", "hola", COORDINATOR)

    assert transport.sent == []


def test_alert_history_lists_reminders_and_manual_alerts(alerts, clock) -> None:
    alerts.send_reminders()
    clock.advance(hours=1)
    alerts.send_alert("p-2", "Recuerda la reunión", COORDINATOR, subject="Reunión de cierre")

    history = alerts.alert_history("p-2")

    assert [record.message_kind for record in history] == ["ALERTA_MANUAL", "RECORDATORIO", "RECORDATORIO"]
    assert history[0].subject == "Reunión de cierre"
    assert [record.entry_id for record in history] == sorted(
        (record.entry_id for record in history), reverse=True
    )
    assert alerts.alert_history("p-6") == []
