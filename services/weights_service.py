"""Registro atómico de la ponderación vigente."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, List, Optional

from core.config import CoreConfig
from core.utils import Clock, utc_now
from data.models.audit import ActionKind
from data.models.practice import ActorContext
from data.models.weights import WeightConfig
from data.storage.base import WeightStore

if TYPE_CHECKING:  # pragma: no cover - solo para anotaciones
    from services.audit_ledger import AuditLedger

logger = logging.getLogger(__name__)

__all__ = ["WeightSettings"]


class WeightSettings:
    """Single source of truth for the evaluation weights.

    The store holds every accepted :class:`WeightConfig`; :meth:`current`
    always reads the latest one, so several ``WeightSettings`` over the same
    store agree.  A replacement is written with compare-and-set on
    ``version``: when another writer got there first the store raises
    ``ConflictError`` and nothing is written.
    """

    def __init__(
        self,
        store: WeightStore,
        *,
        ledger: Optional["AuditLedger"] = None,
        clock: Clock = utc_now,
        config: Optional[CoreConfig] = None,
    ) -> None:
        config = config or CoreConfig()
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self._default = WeightConfig.create(config.default_informe_weight, config.default_empleador_weight)
        self._write_lock = threading.Lock()

    def current(self) -> WeightConfig:
        """Return the latest accepted configuration or the 60/40 default."""

        stored = self.store.load_weights()
        return stored if stored is not None else self._default

    def replace_weights(
        self,
        informe_weight: Any,
        empleador_weight: Any,
        *,
        actor: Optional[ActorContext] = None,
    ) -> WeightConfig:
        # La validación ocurre antes de tomar el lock: si falla no hay efectos.
        WeightConfig.create(informe_weight, empleador_weight)

        with self._write_lock:
            previous = self.current()
            replacement = WeightConfig.create(
                informe_weight,
                empleador_weight,
                version=previous.version + 1,
                replaced_at=self.clock(),
                replaced_by=actor.actor_id if actor else None,
            )
            self.store.save_weights(replacement, expected_version=previous.version)

        logger.info(
            "Ponderación reemplazada: informe=%s%% empleador=%s%% (versión %s)",
            replacement.informe_weight,
            replacement.empleador_weight,
            replacement.version,
        )
        self._record(previous, replacement, actor)
        return replacement

    def history(self) -> List[WeightConfig]:
        return self.store.weights_history()

    def _record(
        self,
        previous: WeightConfig,
        replacement: WeightConfig,
        actor: Optional[ActorContext],
    ) -> None:
        if self.ledger is None:
            return
        actor = actor or ActorContext.system()
        self.ledger.append_best_effort(
            ActionKind.WEIGHTS_REPLACED,
            actor=actor,
            subject_type="ConfiguracionEvaluacion",
            subject_id=str(replacement.version),
            payload={
                "previous": previous.to_dict(),
                "current": replacement.to_dict(),
            },
        )
