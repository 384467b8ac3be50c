"""Configuración compartida para las pruebas del núcleo de prácticas."""

import sys
import threading
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

# Ensure the project root is on sys.path for imports like `services.lifecycle_service`.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from data.models.practice import (  # noqa: E402
    ActorContext,
    Evaluation,
    EvaluationAuthor,
    Person,
    Practice,
    PracticeState,
    PracticeType,
    Role,
)
from data.storage.memory import InMemoryStore  # noqa: E402
from services.audit_ledger import AuditLedger  # noqa: E402
from services.lifecycle_service import PracticeStateMachine  # noqa: E402
from services.notification_service import (  # noqa: E402
    MessageContent,
    NotificationDispatcher,
    Recipient,
    SendResult,
)
from services.weights_service import WeightSettings  # noqa: E402


class FixedClock:
    """Reloj controlable para pruebas deterministas."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingTransport:
    """Transporte en memoria que registra cada envío y puede fallar por dirección."""

    def __init__(self, failing: Tuple[str, ...] = ()) -> None:
        self.failing = set(failing)
        self.sent: List[Tuple[Recipient, MessageContent]] = []
        self._lock = threading.Lock()

    def send(self, recipient: Recipient, content: MessageContent) -> SendResult:
        if recipient.address in self.failing:
            return SendResult(delivered=False, error="buzón rechazado")
        with self._lock:
            self.sent.append((recipient, content))
        return SendResult(delivered=True, provider_id=f"msg-{recipient.id}")

    @property
    def addresses(self) -> List[Optional[str]]:
        return [recipient.address for recipient, _ in self.sent]


PEOPLE = (
    Person("alu-1", "Camila Rojas", "camila@alumnos.cl", Role.ALUMNO, "12.345.678-9"),
    Person("alu-2", "José Núñez", "jose@alumnos.cl", Role.ALUMNO, "9.876.543-2"),
    Person("doc-1", "Patricia Soto", "psoto@instituto.cl", Role.DOCENTE),
    Person("doc-2", "Ramón Díaz", "rdiaz@instituto.cl", Role.DOCENTE),
    Person("emp-1", "Empresa Andes", "rrhh@andes.cl", Role.EMPLEADOR),
    Person("coo-1", "Lucía Vera", "lvera@instituto.cl", Role.COORDINADOR),
)

COORDINATOR = ActorContext("coo-1", Role.COORDINADOR)
SUPERVISOR = ActorContext("doc-1", Role.DOCENTE)
OTHER_SUPERVISOR = ActorContext("doc-2", Role.DOCENTE)
STUDENT = ActorContext("alu-1", Role.ALUMNO)
EMPLOYER = ActorContext("emp-1", Role.EMPLEADOR)


def make_practice(practice_id: str = "p-1", **overrides) -> Practice:
    values = dict(
        id=practice_id,
        type=PracticeType.LABORAL,
        student_id="alu-1",
        start_date=date(2024, 3, 11),
        end_date=date(2024, 6, 28),
        program_id="car-1",
        site_id="sede-1",
        supervisor_id="doc-1",
        employer_id="emp-1",
        host_organization_id="centro-1",
    )
    values.update(overrides)
    return Practice(**values)


def seed_practice(
    store: InMemoryStore,
    state: PracticeState,
    *,
    practice_id: str = "p-1",
    with_evaluations: bool = False,
    grades: Tuple[float, float] = (6.0, 5.0),
    submitted_at: datetime = datetime(2024, 6, 30, 9, 0, tzinfo=timezone.utc),
    **overrides,
) -> Practice:
    """Guarda una práctica directamente en ``state``, opcionalmente con ambas evaluaciones."""

    practice = store.add_practice(make_practice(practice_id, state=state, **overrides))
    if not with_evaluations:
        return practice
    for author, grade, field in (
        (EvaluationAuthor.DOCENTE, grades[0], "supervisor_evaluation_id"),
        (EvaluationAuthor.EMPLEADOR, grades[1], "employer_evaluation_id"),
    ):
        evaluation = Evaluation(
            id=f"{practice_id}-{author.value.lower()}",
            practice_id=practice_id,
            author_role=author,
            author_id=practice.supervisor_id if author is EvaluationAuthor.DOCENTE else practice.employer_id,
            grade=grade,
            submitted_at=submitted_at,
        )
        practice = store.save_practice(
            replace(practice, **{field: evaluation.id}),
            expected_version=practice.version,
            evaluation=evaluation,
        )
    return practice


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore(PEOPLE)


@pytest.fixture
def ledger(store: InMemoryStore, clock: FixedClock) -> AuditLedger:
    return AuditLedger(store, clock=clock)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def dispatcher(ledger, store, transport) -> NotificationDispatcher:
    return NotificationDispatcher(ledger, store, store, transport, timeout=2.0)


@pytest.fixture
def weights(store, ledger, clock) -> WeightSettings:
    return WeightSettings(store, ledger=ledger, clock=clock)


@pytest.fixture
def machine(store, ledger, weights, dispatcher) -> PracticeStateMachine:
    return PracticeStateMachine(store, ledger, weights, dispatcher=dispatcher)
