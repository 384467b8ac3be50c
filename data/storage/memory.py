"""Almacén en memoria, seguro para hilos, que cumple todas las interfaces.

Se usa en las pruebas y en aplicaciones que embeben el núcleo sin base de
datos.  Un único ``RLock`` serializa las escrituras; las lecturas devuelven
instantáneas inmutables.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from core.errors import ConflictError, NotFoundError
from data.models.audit import AuditDraft, AuditLogEntry
from data.models.practice import Evaluation, FinalActa, Person, Practice, Role
from data.models.weights import WeightConfig


class InMemoryStore:
    """Reference implementation of the storage protocols."""

    def __init__(self, people: Iterable[Person] = ()) -> None:
        self._lock = threading.RLock()
        self._practices: Dict[str, Practice] = {}
        self._evaluations: Dict[str, Evaluation] = {}
        self._evaluations_by_practice: Dict[str, List[str]] = {}
        self._final_actas: Dict[str, FinalActa] = {}
        self._audit: List[AuditLogEntry] = []
        self._audit_sequence = itertools.count(1)
        self._weights: List[WeightConfig] = []
        self._people: Dict[str, Person] = {person.id: person for person in people}

    # ------------------------------------------------------------------
    # Prácticas
    # ------------------------------------------------------------------
    def add_practice(self, practice: Practice) -> Practice:
        with self._lock:
            if practice.id in self._practices:
                raise ValueError(f"La práctica {practice.id} ya existe")
            stored = replace(practice, version=1)
            self._practices[stored.id] = stored
            return stored

    def get_practice(self, practice_id: str) -> Practice:
        with self._lock:
            try:
                return self._practices[practice_id]
            except KeyError:
                raise NotFoundError("Práctica", practice_id) from None

    def list_practices(self) -> List[Practice]:
        with self._lock:
            return list(self._practices.values())

    def save_practice(
        self,
        practice: Practice,
        *,
        expected_version: int,
        evaluation: Optional[Evaluation] = None,
        final_acta: Optional[FinalActa] = None,
    ) -> Practice:
        with self._lock:
            current = self._practices.get(practice.id)
            if current is None:
                raise NotFoundError("Práctica", practice.id)
            if current.version != expected_version:
                raise ConflictError(
                    practice.id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )
            if final_acta is not None and practice.id in self._final_actas:
                raise ConflictError(
                    practice.id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )
            stored = replace(practice, version=current.version + 1)
            self._practices[stored.id] = stored
            if evaluation is not None:
                self._evaluations[evaluation.id] = evaluation
                self._evaluations_by_practice.setdefault(practice.id, []).append(evaluation.id)
            if final_acta is not None:
                self._final_actas[practice.id] = final_acta
            return stored

    # ------------------------------------------------------------------
    # Evaluaciones y actas
    # ------------------------------------------------------------------
    def get_evaluation(self, evaluation_id: str) -> Evaluation:
        with self._lock:
            try:
                return self._evaluations[evaluation_id]
            except KeyError:
                raise NotFoundError("Evaluación", evaluation_id) from None

    def list_evaluations(self, practice_id: str) -> List[Evaluation]:
        with self._lock:
            ids = self._evaluations_by_practice.get(practice_id, [])
            return [self._evaluations[evaluation_id] for evaluation_id in ids]

    def get_final_acta(self, practice_id: str) -> Optional[FinalActa]:
        with self._lock:
            return self._final_actas.get(practice_id)

    # ------------------------------------------------------------------
    # Auditoría
    # ------------------------------------------------------------------
    def append_audit(self, draft: AuditDraft, timestamp: datetime) -> AuditLogEntry:
        with self._lock:
            entry = draft.seal(next(self._audit_sequence), timestamp)
            self._audit.append(entry)
            return entry

    def audit_snapshot(self) -> Sequence[AuditLogEntry]:
        with self._lock:
            return tuple(self._audit)

    # ------------------------------------------------------------------
    # Ponderaciones
    # ------------------------------------------------------------------
    def load_weights(self) -> Optional[WeightConfig]:
        with self._lock:
            return self._weights[-1] if self._weights else None

    def save_weights(self, config: WeightConfig, *, expected_version: int) -> WeightConfig:
        with self._lock:
            current = self._weights[-1].version if self._weights else 0
            if current != expected_version:
                raise ConflictError(
                    "de ponderación",
                    expected_version=expected_version,
                    actual_version=current,
                    entity="configuración",
                )
            self._weights.append(config)
            return config

    def weights_history(self) -> List[WeightConfig]:
        with self._lock:
            return list(self._weights)

    # ------------------------------------------------------------------
    # Directorio
    # ------------------------------------------------------------------
    def add_person(self, person: Person) -> None:
        with self._lock:
            self._people[person.id] = person

    def get_person(self, person_id: str) -> Optional[Person]:
        with self._lock:
            return self._people.get(person_id)

    def people_with_role(self, role: Role) -> List[Person]:
        with self._lock:
            people = [person for person in self._people.values() if person.role is role]
        return sorted(people, key=lambda person: person.id)


__all__ = ["InMemoryStore"]
