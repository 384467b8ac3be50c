"""Custodia cifrada de las credenciales iniciales de los alumnos.

Las contraseñas iniciales se envían al alumno junto con la solicitud del
acta 1.  Mientras tanto se guardan cifradas con Fernet; la clave se deriva de
una passphrase con PBKDF2-HMAC-SHA256.  Cada lectura en claro
(:meth:`CredentialVault.reveal`) deja una entrada ``SENSITIVE_READ`` en el libro
de auditoría, tanto si el descifrado funciona como si falla.

El archivo exportado por :meth:`CredentialVault.dump` almacena un JSON con el
``salt`` de la bóveda (base64) y un ``token`` de Fernet por usuario.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.errors import CredentialError
from data.models.audit import ActionKind
from data.models.practice import ActorContext
from services.audit_ledger import AuditLedger
from services.notification_service import (
    DispatchOutcome,
    EventKind,
    NotificationDispatcher,
    NotificationEvent,
    SubjectType,
)

PASSPHRASE_ENV_VAR = "PRACTICAS_VAULT_PASSPHRASE"
PBKDF2_ITERATIONS = 390_000
PBKDF2_LENGTH = 32
MIN_PASSPHRASE_LENGTH = 8
SALT_LENGTH = 16

logger = logging.getLogger(__name__)

__all__ = ["CredentialVault", "SealedCredential"]


@dataclass(slots=True, frozen=True)
class SealedCredential:
    user_id: str
    token: str


def _validate_passphrase(passphrase: Optional[str]) -> str:
    cleaned = (passphrase or "").strip()
    if len(cleaned) < MIN_PASSPHRASE_LENGTH:
        raise CredentialError(
            "La passphrase debe tener al menos 8 caracteres para proteger las credenciales.",
            context={"min_length": MIN_PASSPHRASE_LENGTH},
        )
    return cleaned


def _derive_key(passphrase: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=PBKDF2_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class CredentialVault:
    """Cifra, guarda y revela credenciales con auditoría de cada lectura."""

    def __init__(
        self,
        ledger: AuditLedger,
        passphrase: Optional[str] = None,
        *,
        salt: Optional[bytes] = None,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> None:
        if passphrase is None:
            passphrase = os.getenv(PASSPHRASE_ENV_VAR)
            if not passphrase:
                raise CredentialError(
                    f"Se requiere la variable de entorno {PASSPHRASE_ENV_VAR} para abrir la bóveda."
                )
        self.ledger = ledger
        self.salt = salt or os.urandom(SALT_LENGTH)
        self.iterations = iterations
        self._fernet = Fernet(_derive_key(_validate_passphrase(passphrase), self.salt, iterations))
        self._lock = threading.Lock()
        self._sealed: Dict[str, SealedCredential] = {}

    # ------------------------------------------------------------------
    # Cifrado
    # ------------------------------------------------------------------
    def seal(self, user_id: str, secret: str) -> SealedCredential:
        """Cifra ``secret`` y lo guarda como credencial vigente de ``user_id``."""

        cleaned = (secret or "").strip()
        if not cleaned:
            raise CredentialError(
                "La credencial no puede estar vacía.", context={"user_id": user_id}
            )
        sealed = SealedCredential(
            user_id=user_id,
            token=self._fernet.encrypt(cleaned.encode("utf-8")).decode("utf-8"),
        )
        with self._lock:
            self._sealed[user_id] = sealed
        logger.debug("Credencial sellada para %s", user_id)
        return sealed

    def has_credential(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._sealed

    def reveal(self, user_id: str, actor: ActorContext) -> str:
        """Descifra la credencial de ``user_id`` y registra la lectura.

        Si la auditoría no se puede escribir se lanza
        :class:`~core.errors.AuditWriteFailedError` y el secreto no se entrega.
        """

        try:
            secret = self._decrypt(user_id)
        except CredentialError as exc:
            self._record_read(user_id, actor, success=False, error=exc.message)
            logger.warning("Lectura de credencial fallida para %s: %s", user_id, exc.message)
            raise
        self._record_read(user_id, actor, success=True)
        return secret

    def _decrypt(self, user_id: str) -> str:
        with self._lock:
            sealed = self._sealed.get(user_id)
        if sealed is None:
            raise CredentialError(
                f"No hay credenciales guardadas para {user_id}.", context={"user_id": user_id}
            )
        try:
            decrypted = self._fernet.decrypt(sealed.token.encode("utf-8"))
        except InvalidToken as exc:
            raise CredentialError(
                "No se pudo descifrar la credencial con la passphrase proporcionada.",
                context={"user_id": user_id},
            ) from exc
        return decrypted.decode("utf-8")

    def _record_read(
        self,
        user_id: str,
        actor: ActorContext,
        *,
        success: bool,
        error: Optional[str] = None,
    ) -> int:
        return self.ledger.append(
            ActionKind.SENSITIVE_READ,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            subject_type=SubjectType.USUARIO.value,
            subject_id=user_id,
            payload={"field": "password_inicial"},
            success=success,
            error=error,
        )

    # ------------------------------------------------------------------
    # Entrega
    # ------------------------------------------------------------------
    def deliver(
        self,
        user_id: str,
        actor: ActorContext,
        dispatcher: NotificationDispatcher,
        *,
        username: Optional[str] = None,
    ) -> DispatchOutcome:
        """Revela la credencial y la envía al usuario con un evento ``CREDENCIALES``."""

        secret = self.reveal(user_id, actor)
        event = NotificationEvent.for_user(
            EventKind.CREDENCIALES,
            user_id,
            actor=actor,
            usuario=username or user_id,
            password=secret,
        )
        return dispatcher.dispatch(event)

    # ------------------------------------------------------------------
    # Persistencia
    # ------------------------------------------------------------------
    def dump(self, output_file: Path) -> Path:
        """Escribe el salt y los tokens (nunca texto plano) en ``output_file``."""

        with self._lock:
            tokens = {user_id: sealed.token for user_id, sealed in sorted(self._sealed.items())}
        payload = {
            "salt": base64.b64encode(self.salt).decode("utf-8"),
            "iterations": self.iterations,
            "tokens": tokens,
        }
        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            output_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:  # pragma: no cover - errores de filesystem inesperados.
            raise CredentialError(
                f"No se pudo escribir el archivo de credenciales: {exc}"
            ) from exc
        return output_file

    @classmethod
    def load(cls, input_file: Path, ledger: AuditLedger, passphrase: Optional[str] = None) -> "CredentialVault":
        """Reabre una bóveda escrita por :meth:`dump`."""

        try:
            payload = json.loads(Path(input_file).read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise CredentialError("El archivo de credenciales contiene un JSON inválido.") from exc
        except OSError as exc:
            raise CredentialError(f"No se pudo leer el archivo de credenciales: {exc}") from exc

        salt_b64 = payload.get("salt")
        if not salt_b64:
            raise CredentialError("El archivo de credenciales debe contener el campo 'salt'.")
        try:
            salt = base64.b64decode(salt_b64)
        except (ValueError, TypeError) as exc:
            raise CredentialError("El salt del archivo de credenciales no es válido.") from exc

        vault = cls(
            ledger,
            passphrase,
            salt=salt,
            iterations=int(payload.get("iterations", PBKDF2_ITERATIONS)),
        )
        with vault._lock:
            for user_id, token in dict(payload.get("tokens", {})).items():
                vault._sealed[user_id] = SealedCredential(user_id=user_id, token=token)
        return vault
