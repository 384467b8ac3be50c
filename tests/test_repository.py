"""Tests for the historical acta search and its exports."""

import json
from datetime import date, datetime, timezone

import pandas as pd
import pytest

from data.models.practice import PracticeState
from reporting.repository import ActaFilters, ActaKind, ActaRepository

from conftest import COORDINATOR, seed_practice


@pytest.fixture
def repository(store, machine) -> ActaRepository:
    seed_practice(store, PracticeState.EVALUACION_COMPLETA, with_evaluations=True)
    machine.request_transition("p-1", PracticeState.CERRADA, COORDINATOR)
    seed_practice(store, PracticeState.EN_CURSO, practice_id="p-2", student_id="alu-2")
    seed_practice(
        store,
        PracticeState.FINALIZADA_PENDIENTE_EVAL,
        practice_id="p-3",
        student_id="alu-2",
        start_date=date(2024, 8, 5),
        end_date=date(2024, 11, 29),
        site_id="sede-2",
    )
    seed_practice(
        store,
        PracticeState.ANULADA,
        practice_id="p-4",
        with_evaluations=True,
        cancellation_reason="retiro",
    )
    return ActaRepository(store, store)


def _keys(actas):
    return [(acta.practice_id, acta.kind) for acta in actas]


def test_search_projects_actas_by_state_in_chronological_order(repository) -> None:
    actas = repository.search()

    assert _keys(actas) == [
        ("p-1", ActaKind.ACTA1),
        ("p-1", ActaKind.EVALUACION_INFORME),
        ("p-1", ActaKind.EVALUACION_EMPLEADOR),
        ("p-1", ActaKind.ACTA_FINAL),
        ("p-3", ActaKind.ACTA1),
    ]
    final = actas[3]
    assert final.grade == 5.6
    assert final.title == "Acta Final de Evaluación"
    assert final.student_name == "Camila Rojas"
    assert final.created_at == datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "needle, expected",
    [
        ("camila", {"p-1"}),
        ("ROJAS", {"p-1"}),
        ("jose nunez", {"p-3"}),
        ("12.345.678-9", {"p-1"}),
        ("98765432", {"p-3"}),
        ("alu-2", {"p-3"}),
        ("nadie", set()),
    ],
)
def test_student_filter_matches_name_rut_or_id(repository, needle, expected) -> None:
    found = {acta.practice_id for acta in repository.search(ActaFilters(student=needle))}

    assert found == expected


def test_filters_are_conjunctive(repository) -> None:
    assert _keys(repository.search(ActaFilters(site_id="sede-2", semester=2))) == [
        ("p-3", ActaKind.ACTA1)
    ]
    assert repository.search(ActaFilters(site_id="sede-2", semester=1)) == []
    assert repository.search(ActaFilters(academic_year=2023)) == []
    assert {acta.practice_id for acta in repository.search(ActaFilters(program_id="car-1"))} == {
        "p-1",
        "p-3",
    }


def test_kind_filter_accepts_plain_strings(repository) -> None:
    actas = repository.search(ActaFilters(kind="ACTA_FINAL"))

    assert _keys(actas) == [("p-1", ActaKind.ACTA_FINAL)]


def test_invalid_semester_is_rejected() -> None:
    with pytest.raises(ValueError):
        ActaFilters(semester=3)


def test_search_has_no_side_effects(repository, store, ledger) -> None:
    before = (store.list_practices(), ledger.count())

    repository.search(ActaFilters(student="camila"))

    assert (store.list_practices(), ledger.count()) == before


def test_export_xlsx_writes_detail_and_summary(repository, tmp_path) -> None:
    target = repository.export(repository.search(), tmp_path / "reportes" / "actas", "excel")

    assert target.suffix == ".xlsx"
    sheets = pd.read_excel(target, sheet_name=None)
    assert list(sheets) == ["actas", "resumen"]
    assert len(sheets["actas"]) == 5
    summary = sheets["resumen"].set_index("kind")
    assert summary.loc["ACTA1", "cantidad"] == 2
    assert summary.loc["ACTA_FINAL", "nota_promedio"] == pytest.approx(5.6)


def test_export_csv_and_json(repository, tmp_path) -> None:
    actas = repository.search(ActaFilters(student="camila"))

    csv_path = repository.export(actas, tmp_path / "actas.xlsx", "csv")
    json_path = repository.export(actas, tmp_path / "actas", "json")

    assert csv_path.name == "actas.csv"
    frame = pd.read_csv(csv_path, encoding="utf-8-sig")
    assert list(frame["kind"]) == ["ACTA1", "EVALUACION_INFORME", "EVALUACION_EMPLEADOR", "ACTA_FINAL"]
    payload = json.loads(json_path.read_text(encoding="utf-8"))
    assert payload["total"] == 4
    assert payload["actas"][0]["student_rut"] == "12.345.678-9"


def test_export_empty_selection(repository, tmp_path) -> None:
    target = repository.export([], tmp_path / "vacio", "xlsx")

    sheets = pd.read_excel(target, sheet_name=None)
    assert sheets["actas"].empty
    assert sheets["resumen"].empty


def test_export_rejects_unknown_format(repository, tmp_path) -> None:
    with pytest.raises(ValueError):
        repository.export(repository.search(), tmp_path / "actas", "pdf")
