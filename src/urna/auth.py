"""
EN: Static credential gate producing a role label.
    The core treats the resulting role as an opaque capability source; it
    performs no credential storage beyond this fixed table. Passwords are kept
    as salted SHA-256 digests and compared in constant time.

ES: Gate de credenciales estáticas que produce una etiqueta de rol.
    El núcleo sólo consume el rol resultante; no almacena credenciales más
    allá de esta tabla fija.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple

import structlog

from .errors import InvalidCredentials, ValidationError
from .models import Role

logger = structlog.get_logger(__name__)


def hash_password(password: str) -> str:
    """EN: Hash a password using SHA-256 with a fixed salt prefix.

    ES: Hashea una contrasena usando SHA-256 con un prefijo salt fijo.
    """
    salted = f"urna_salt_{password}"
    return hashlib.sha256(salted.encode("utf-8")).hexdigest()


# EN: Demo accounts of the original client.
# ES: Cuentas de demostracion del cliente original.
DEFAULT_CREDENTIALS: Tuple[Tuple[str, str, Role], ...] = (
    ("admin", hash_password("admin123"), Role.ADMIN),
    ("1", hash_password("1"), Role.USER),
)


@dataclass(frozen=True)
class Principal:
    username: str
    role: Role


class StaticCredentialGate:
    """EN: Validates credentials against a fixed table.

    ES: Valida credenciales contra una tabla fija.
    """

    def __init__(self, credentials: Optional[Iterable[Tuple[str, str, Role]]] = None) -> None:
        table = DEFAULT_CREDENTIALS if credentials is None else tuple(credentials)
        self._table: Mapping[str, Tuple[str, Role]] = {
            username: (digest, Role(role)) for username, digest, role in table
        }

    @classmethod
    def from_settings(cls, settings) -> "StaticCredentialGate":  # noqa: ANN001
        """EN: Build the gate from ``UrnaSettings.users`` (defaults when empty)."""
        if not settings.users:
            return cls()
        return cls((entry.username, entry.password_sha256, entry.role) for entry in settings.users)

    def login(self, username: str, password: str) -> Principal:
        """EN: Return the principal or raise ``InvalidCredentials``.

        ES: Retorna el principal o lanza ``InvalidCredentials``.
        """
        if not username or not password:
            raise ValidationError("Please fill in all fields")
        entry = self._table.get(username)
        if entry is None or not hmac.compare_digest(entry[0], hash_password(password)):
            logger.warning("login_rejected", username=username)
            raise InvalidCredentials("Invalid username or password")
        logger.info("login_accepted", username=username, role=entry[1].value)
        return Principal(username=username, role=entry[1])
