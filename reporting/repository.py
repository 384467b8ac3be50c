"""Repositorio histórico de actas: búsqueda y exportación.

Las actas no se almacenan por separado: se proyectan desde las prácticas, sus
evaluaciones y el acta final según el estado alcanzado.  La búsqueda no tiene
efectos secundarios.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

import pandas as pd

from core.utils import ensure_dir, normalize_text, to_utc
from data.models.practice import Person, Practice, PracticeState, reached
from data.storage.base import Directory, PracticeStore

__all__ = ["ActaFilters", "ActaKind", "ActaRepository", "HistoricalActa"]


class ActaKind(str, Enum):
    ACTA1 = "ACTA1"
    EVALUACION_INFORME = "EVALUACION_INFORME"
    EVALUACION_EMPLEADOR = "EVALUACION_EMPLEADOR"
    ACTA_FINAL = "ACTA_FINAL"


ACTA_TITLES: Dict[ActaKind, str] = {
    ActaKind.ACTA1: "Acta 1 - Supervisión de Práctica",
    ActaKind.EVALUACION_INFORME: "Evaluación del Informe de Práctica",
    ActaKind.EVALUACION_EMPLEADOR: "Acta 2 - Evaluación por Empleador",
    ActaKind.ACTA_FINAL: "Acta Final de Evaluación",
}

_EXPORT_COLUMNS = [
    "practice_id",
    "kind",
    "title",
    "created_at",
    "state",
    "student_id",
    "student_name",
    "student_rut",
    "program_id",
    "site_id",
    "academic_year",
    "semester",
    "grade",
]


@dataclass(slots=True, frozen=True)
class ActaFilters:
    """Filtros de búsqueda; todos los presentes deben cumplirse."""

    student: Optional[str] = None
    site_id: Optional[str] = None
    program_id: Optional[str] = None
    academic_year: Optional[int] = None
    semester: Optional[int] = None
    kind: Optional[ActaKind] = None

    def __post_init__(self) -> None:
        if self.semester is not None and self.semester not in (1, 2):
            raise ValueError(f"Semestre inválido: {self.semester!r} (use 1 o 2)")
        if self.kind is not None and not isinstance(self.kind, ActaKind):
            object.__setattr__(self, "kind", ActaKind(self.kind))


@dataclass(slots=True, frozen=True)
class HistoricalActa:
    practice_id: str
    kind: ActaKind
    title: str
    created_at: datetime
    state: PracticeState
    student_id: str
    student_name: str
    student_rut: Optional[str]
    program_id: Optional[str]
    site_id: Optional[str]
    academic_year: int
    semester: int
    grade: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practice_id": self.practice_id,
            "kind": self.kind.value,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "state": self.state.value,
            "student_id": self.student_id,
            "student_name": self.student_name,
            "student_rut": self.student_rut,
            "program_id": self.program_id,
            "site_id": self.site_id,
            "academic_year": self.academic_year,
            "semester": self.semester,
            "grade": self.grade,
        }


def _as_datetime(value: date) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


class ActaRepository:
    """Read-only projection of the actas produced by each practice."""

    def __init__(self, store: PracticeStore, directory: Directory, *, encoding: str = "utf-8-sig") -> None:
        self.store = store
        self.directory = directory
        self.encoding = encoding

    def search(self, filters: Optional[ActaFilters] = None) -> List[HistoricalActa]:
        filters = filters or ActaFilters()
        needle = normalize_text(filters.student or "")
        results: List[HistoricalActa] = []

        for practice in self.store.list_practices():
            if filters.site_id is not None and practice.site_id != filters.site_id:
                continue
            if filters.program_id is not None and practice.program_id != filters.program_id:
                continue
            if filters.academic_year is not None and practice.academic_year != filters.academic_year:
                continue
            if filters.semester is not None and practice.semester != filters.semester:
                continue
            student = self.directory.get_person(practice.student_id)
            if needle and not _student_matches(needle, practice.student_id, student):
                continue
            for acta in self._available_actas(practice, student):
                if filters.kind is not None and acta.kind is not filters.kind:
                    continue
                results.append(acta)

        results.sort(key=lambda acta: (acta.created_at, acta.practice_id))
        return results

    def _available_actas(self, practice: Practice, student: Optional[Person]) -> List[HistoricalActa]:
        if practice.state is PracticeState.ANULADA:
            return []
        if not reached(practice.state, PracticeState.FINALIZADA_PENDIENTE_EVAL):
            return []

        def _build(kind: ActaKind, created_at: datetime, grade: Optional[float] = None) -> HistoricalActa:
            return HistoricalActa(
                practice_id=practice.id,
                kind=kind,
                title=ACTA_TITLES[kind],
                created_at=created_at,
                state=practice.state,
                student_id=practice.student_id,
                student_name=student.name if student else practice.student_id,
                student_rut=student.rut if student else None,
                program_id=practice.program_id,
                site_id=practice.site_id,
                academic_year=practice.academic_year,
                semester=practice.semester,
                grade=grade,
            )

        actas = [_build(ActaKind.ACTA1, _as_datetime(practice.start_date))]
        if practice.supervisor_evaluation_id:
            evaluation = self.store.get_evaluation(practice.supervisor_evaluation_id)
            actas.append(_build(ActaKind.EVALUACION_INFORME, to_utc(evaluation.submitted_at), evaluation.grade))
        if practice.employer_evaluation_id:
            evaluation = self.store.get_evaluation(practice.employer_evaluation_id)
            actas.append(_build(ActaKind.EVALUACION_EMPLEADOR, to_utc(evaluation.submitted_at), evaluation.grade))
        if practice.state is PracticeState.CERRADA:
            final_acta = self.store.get_final_acta(practice.id)
            if final_acta is not None:
                actas.append(_build(ActaKind.ACTA_FINAL, to_utc(final_acta.closed_at), final_acta.nota_ponderada))
        return actas

    # ------------------------------------------------------------------
    # Exportación
    # ------------------------------------------------------------------
    def export(
        self,
        actas: Sequence[HistoricalActa],
        output_path: Path,
        output_format: str = "xlsx",
    ) -> Path:
        """Write ``actas`` as xlsx, csv or json and return the written file."""

        output_path = Path(output_path)
        normalised_format = _normalise_format((output_format or "xlsx").lower())
        if normalised_format not in {"xlsx", "csv", "json"}:
            raise ValueError(
                "Formato de salida no soportado: usa xlsx, csv o json como formato solicitado."
            )
        ensure_dir(output_path.parent)
        base_name = output_path.stem if output_path.suffix else output_path.name
        target = (output_path.parent / base_name).with_suffix(f".{normalised_format}")

        rows = [_export_row(acta) for acta in actas]
        df = pd.DataFrame(rows, columns=_EXPORT_COLUMNS)

        if normalised_format == "xlsx":
            with pd.ExcelWriter(target, engine="openpyxl") as writer:
                used_names: Set[str] = set()
                df.to_excel(writer, sheet_name=_safe_sheet_name("actas", used_names), index=False)
                _summary_frame(df).to_excel(
                    writer, sheet_name=_safe_sheet_name("resumen", used_names), index=False
                )
        elif normalised_format == "csv":
            df.to_csv(target, index=False, encoding=self.encoding)
        else:
            target.write_text(
                json.dumps({"actas": rows, "total": len(rows)}, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        return target


def _student_matches(needle: str, student_id: str, student: Optional[Person]) -> bool:
    candidates: List[str] = [student_id]
    if student is not None:
        candidates.append(student.name)
        if student.rut:
            candidates.append(student.rut)
            # Permite buscar el RUT sin puntos ni guion.
            candidates.append(re.sub(r"[.\-]", "", student.rut))
    return any(needle in normalize_text(candidate) for candidate in candidates)


def _export_row(acta: HistoricalActa) -> Dict[str, Any]:
    row = acta.to_dict()
    return {column: row[column] for column in _EXPORT_COLUMNS}


def _summary_frame(df: "pd.DataFrame") -> "pd.DataFrame":
    if df.empty:
        return pd.DataFrame(columns=["kind", "cantidad", "nota_promedio"])
    graded = df.assign(grade=pd.to_numeric(df["grade"], errors="coerce"))
    summary = (
        graded.groupby("kind", sort=True)
        .agg(cantidad=("practice_id", "size"), nota_promedio=("grade", "mean"))
        .reset_index()
    )
    summary["nota_promedio"] = summary["nota_promedio"].round(1)
    return summary


def _normalise_format(fmt: str) -> str:
    mapping = {
        "xls": "xlsx",
        "excel": "xlsx",
    }
    return mapping.get(fmt, fmt)


def _safe_sheet_name(name: str, existing: Set[str]) -> str:
    """Return an Excel-compatible sheet name ensuring uniqueness."""

    sanitized = re.sub(r"[:\\/?*\[\]]", "_", name).strip()
    if not sanitized:
        sanitized = "sheet"
    sanitized = sanitized[:31]
    candidate = sanitized
    index = 1
    used_lower = {value.lower() for value in existing}
    while candidate.lower() in used_lower:
        suffix = f"_{index}"
        base_length = max(0, 31 - len(suffix))
        candidate = f"{sanitized[:base_length]}{suffix}" if base_length else suffix[-31:]
        index += 1
    existing.add(candidate)
    return candidate
