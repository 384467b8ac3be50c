import pytest

from core.errors import AuditWriteFailedError, CredentialError
from data.models.audit import ActionKind, AuditFilter
from data.storage.memory import InMemoryStore
from services.audit_ledger import AuditLedger
from utils.credential_vault import PASSPHRASE_ENV_VAR, CredentialVault

from conftest import COORDINATOR, PEOPLE

# Iteraciones bajas para mantener rápidas las pruebas.
FAST = 1_000


def _reads(ledger):
    return list(ledger.query(AuditFilter.for_kinds([ActionKind.SENSITIVE_READ])))


@pytest.fixture
def vault(ledger) -> CredentialVault:
    return CredentialVault(ledger, "passphrase-segura", iterations=FAST)


def test_seal_never_stores_plain_text(vault) -> None:
    sealed = vault.seal("alu-1", "Inicial.2024")

    assert "Inicial.2024" not in sealed.token
    assert vault.has_credential("alu-1")


def test_reveal_returns_secret_and_audits_the_read(vault, ledger) -> None:
    vault.seal("alu-1", "Inicial.2024")

    assert vault.reveal("alu-1", COORDINATOR) == "Inicial.2024"

    [entry] = _reads(ledger)
    assert entry.subject_type == "Usuario"
    assert entry.subject_id == "alu-1"
    assert entry.actor_id == COORDINATOR.actor_id
    assert entry.payload["field"] == "password_inicial"
    assert entry.success


def test_failed_reveal_is_audited_too(vault, ledger) -> None:
    with pytest.raises(CredentialError):
        vault.reveal("alu-2", COORDINATOR)

    [entry] = _reads(ledger)
    assert not entry.success
    assert entry.outcome.error


def test_secret_is_withheld_when_read_cannot_be_audited(clock) -> None:
    class _BrokenAuditStore(InMemoryStore):
        def append_audit(self, draft, timestamp):
            raise RuntimeError("sin espacio")

    vault = CredentialVault(AuditLedger(_BrokenAuditStore(PEOPLE), clock=clock), "passphrase-segura", iterations=FAST)
    vault.seal("alu-1", "Inicial.2024")

    with pytest.raises(AuditWriteFailedError):
        vault.reveal("alu-1", COORDINATOR)


def test_dump_and_load_round_trip(vault, ledger, tmp_path) -> None:
    vault.seal("alu-1", "Inicial.2024")
    path = vault.dump(tmp_path / "secretos" / "credenciales.json")

    assert "Inicial.2024" not in path.read_text(encoding="utf-8")

    reopened = CredentialVault.load(path, ledger, "passphrase-segura")
    assert reopened.reveal("alu-1", COORDINATOR) == "Inicial.2024"

    wrong = CredentialVault.load(path, ledger, "otra-passphrase")
    with pytest.raises(CredentialError):
        wrong.reveal("alu-1", COORDINATOR)
    assert [entry.success for entry in _reads(ledger)] == [True, False]


def test_load_rejects_broken_files(ledger, tmp_path) -> None:
    broken = tmp_path / "roto.json"
    broken.write_text("{no es json", encoding="utf-8")
    missing_salt = tmp_path / "sin_salt.json"
    missing_salt.write_text('{"tokens": {}}', encoding="utf-8")

    with pytest.raises(CredentialError):
        CredentialVault.load(broken, ledger, "passphrase-segura")
    with pytest.raises(CredentialError):
        CredentialVault.load(missing_salt, ledger, "passphrase-segura")


def test_passphrase_rules(ledger, monkeypatch) -> None:
    with pytest.raises(CredentialError):
        CredentialVault(ledger, "corta", iterations=FAST)

    monkeypatch.delenv(PASSPHRASE_ENV_VAR, raising=False)
    with pytest.raises(CredentialError):
        CredentialVault(ledger, iterations=FAST)

    monkeypatch.setenv(PASSPHRASE_ENV_VAR, "desde-el-entorno")
    assert CredentialVault(ledger, iterations=FAST).seal("alu-1", "x").token


def test_empty_secret_is_rejected(vault) -> None:
    with pytest.raises(CredentialError):
        vault.seal("alu-1", "   ")


def test_deliver_sends_credentials_to_the_user(vault, dispatcher, transport, ledger) -> None:
    vault.seal("alu-1", "Inicial.2024")

    outcome = vault.deliver("alu-1", COORDINATOR, dispatcher, username="crojas")

    assert outcome.sent == 1
    recipient, content = transport.sent[0]
    assert recipient.address == "camila@alumnos.cl"
    assert "Inicial.2024" in content.body
    assert len(_reads(ledger)) == 1
