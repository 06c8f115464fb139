"""Sesión explícita, gate de roles y notificaciones de identidad.

La identidad activa no es estado global: cada pipeline recibe un ``Session``.
El controlador reacciona a cambios de cuenta o de red invalidando la caché,
generando un nuevo token de sesión y re-ejecutando el refresco inicial.

English:
    Explicit session, role gate and identity notifications. The active
    identity is passed to every pipeline as a ``Session`` value. The
    controller reacts to account/network changes by invalidating the cache,
    issuing a new session token and re-running the initial refresh, which
    replaces a full process reload. Completion handlers call
    ``is_current(token)`` before touching visible state.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import structlog

from .auth import Principal, StaticCredentialGate
from .cache import ElectionStateCache
from .errors import PermissionDenied, UrnaError, ValidationError
from .logging import redact
from .models import ElectionSnapshot, Role
from .notifications import NoticeBoard

logger = structlog.get_logger(__name__)

IdentityHandler = Callable[[Optional["Session"]], Any]


@dataclass(frozen=True)
class Session:
    """Identidad activa: usuario, rol, cuenta y token de generación.

    English: Active identity: user, role, account address and generation token.
    """

    username: str
    role: Role
    address: str
    token: int


def require_role(session: Session, role: Role) -> None:
    if session.role is not role:
        raise PermissionDenied(f"This action requires the '{role.value}' role.")


class SessionController:
    """Gestiona login, logout, cambios de identidad y reinicios.

    English: Owns login, logout, identity changes and session resets.
    """

    def __init__(
        self,
        gate: StaticCredentialGate,
        cache: ElectionStateCache,
        *,
        notices: Optional[NoticeBoard] = None,
    ) -> None:
        self._gate = gate
        self._cache = cache
        self._notices = notices
        self._principal: Optional[Principal] = None
        self._session: Optional[Session] = None
        self._token = 0
        self._handlers: List[IdentityHandler] = []

    @property
    def current(self) -> Optional[Session]:
        return self._session

    @property
    def cache(self) -> ElectionStateCache:
        return self._cache

    def is_current(self, token: int) -> bool:
        return self._session is not None and self._session.token == token

    def on_identity_changed(self, handler: IdentityHandler) -> Callable[[], None]:
        """Suscribe un manejador; devuelve la función para desuscribir.

        English: Subscribe a handler; returns the unsubscribe callable.
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def login(self, username: str, password: str, address: str) -> Session:
        """Valida credenciales, fija la identidad y ejecuta el refresco inicial.

        English:
            Validate credentials, bind the identity and run the initial
            refresh. A refresh failure raises a persistent banner and is
            re-raised; the session stays established so the banner's retry
            can succeed later.
        """
        principal = self._gate.login(username, password)
        if not address or not address.strip():
            raise ValidationError("An account address is required.", field="address")
        self._principal = principal
        session = self._issue(address.strip())
        await self._initial_refresh(session)
        return session

    def logout(self) -> None:
        self._cache.invalidate()
        self._principal = None
        self._session = None
        self._token += 1
        logger.info("session_logout")

    async def reset(self) -> ElectionSnapshot:
        """Reinicia la sesión y re-ejecuta el refresco inicial.

        English: Reset the session and re-run the initial refresh.
        """
        session = self._session
        if session is None:
            raise PermissionDenied("No active session to reset.")
        self._cache.invalidate()
        renewed = self._issue(session.address)
        logger.info("session_reset", identity=redact(renewed.address), token=renewed.token)
        return await self._initial_refresh(renewed)

    async def notify_identity_changed(self, address: Optional[str]) -> Optional[Session]:
        """Reacciona a un cambio de cuenta del proveedor de identidad.

        English:
            React to an account change: invalidate the cache, re-gate the
            pipelines through a new session token (or no session when the
            account list is empty) and notify subscribers.
        """
        self._cache.invalidate()
        if self._principal is None:
            self._session = None
            await self._notify(None)
            return None
        if not address:
            self._session = None
            self._token += 1
            logger.info("session_identity_cleared")
            await self._notify(None)
            return None

        session = self._issue(address)
        logger.info("session_identity_changed", identity=redact(address), token=session.token)
        await self._notify(session)
        await self._initial_refresh(session)
        return session

    async def notify_network_changed(self) -> Optional[ElectionSnapshot]:
        if self._session is None:
            self._cache.invalidate()
            return None
        return await self.reset()

    def _issue(self, address: str) -> Session:
        assert self._principal is not None
        self._token += 1
        self._session = Session(
            username=self._principal.username,
            role=self._principal.role,
            address=address,
            token=self._token,
        )
        return self._session

    async def _initial_refresh(self, session: Session) -> ElectionSnapshot:
        try:
            return await self._cache.refresh(session.address)
        except UrnaError as exc:
            logger.error("session_refresh_failed", error_kind=exc.kind.value, error=exc.message)
            if self._notices is not None:
                self._notices.raise_banner(exc.message, retry=lambda: self._retry_refresh(session.token))
            raise

    async def _retry_refresh(self, token: int) -> Optional[ElectionSnapshot]:
        if not self.is_current(token):
            logger.info("session_retry_stale", token=token)
            return None
        assert self._session is not None
        return await self._cache.refresh(self._session.address)

    async def _notify(self, session: Optional[Session]) -> None:
        for handler in list(self._handlers):
            result = handler(session)
            if inspect.isawaitable(result):
                await result
