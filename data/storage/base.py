"""Interfaces de persistencia que el núcleo consume pero no implementa.

Cualquier almacén transaccional (relacional o clave/valor) puede cumplirlas.
La única exigencia especial es la escritura condicionada de
:meth:`PracticeStore.save_practice`: debe fallar con
:class:`core.errors.ConflictError` cuando la versión guardada ya no es la que
el llamador leyó, y debe guardar la evaluación o el acta final que la
acompañan en la misma operación atómica.  :meth:`WeightStore.save_weights`
sigue la misma regla sobre la versión de la última ponderación guardada.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence

from data.models.audit import AuditDraft, AuditLogEntry
from data.models.practice import Evaluation, FinalActa, Person, Practice, Role
from data.models.weights import WeightConfig


class PracticeStore(Protocol):
    def add_practice(self, practice: Practice) -> Practice:
        """Store a new practice and return it with its initial version."""

    def get_practice(self, practice_id: str) -> Practice:
        """Return the current snapshot or raise ``NotFoundError``."""

    def list_practices(self) -> List[Practice]:
        ...

    def save_practice(
        self,
        practice: Practice,
        *,
        expected_version: int,
        evaluation: Optional[Evaluation] = None,
        final_acta: Optional[FinalActa] = None,
    ) -> Practice:
        """Compare-and-set on ``version``; return the stored practice (version + 1)."""

    def get_evaluation(self, evaluation_id: str) -> Evaluation:
        ...

    def list_evaluations(self, practice_id: str) -> List[Evaluation]:
        ...

    def get_final_acta(self, practice_id: str) -> Optional[FinalActa]:
        ...


class AuditStore(Protocol):
    def append_audit(self, draft: AuditDraft, timestamp: datetime) -> AuditLogEntry:
        """Assign the next sequence number and persist the entry."""

    def audit_snapshot(self) -> Sequence[AuditLogEntry]:
        """Return the entries persisted so far, ordered by id."""


class WeightStore(Protocol):
    def load_weights(self) -> Optional[WeightConfig]:
        ...

    def save_weights(self, config: WeightConfig, *, expected_version: int) -> WeightConfig:
        """Append ``config`` only if the latest stored version is ``expected_version``.

        ``0`` means nothing stored yet.  Raises ``ConflictError`` otherwise.
        """

    def weights_history(self) -> List[WeightConfig]:
        ...


class Directory(Protocol):
    def get_person(self, person_id: str) -> Optional[Person]:
        ...

    def people_with_role(self, role: Role) -> Iterable[Person]:
        ...


__all__ = ["AuditStore", "Directory", "PracticeStore", "WeightStore"]
