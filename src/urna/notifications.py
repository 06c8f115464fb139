"""Avisos transitorios y banners persistentes.

Los avisos transitorios desaparecen solos tras una duración fija (5 s por
defecto). Son una ayuda de interfaz: ninguna lógica de recuperación depende
de ellos. Los fallos a nivel de página se muestran como banner persistente
con una acción de reintento explícita.

English:
    Transient notices and persistent banners. Transient notices dismiss
    themselves after a fixed duration; they are a UI affordance and no
    recovery logic depends on them. Page-level failures become a persistent
    banner with an explicit retry action.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_NOTICE_SECONDS = 5.0

RetryAction = Callable[[], Awaitable[Any]]


@dataclass
class Notice:
    id: int
    level: str
    message: str
    persistent: bool = False
    expires_at: Optional[float] = None
    retry: Optional[RetryAction] = field(default=None, repr=False)


class NoticeBoard:
    """Tablero de avisos visible para la capa de presentación.

    English: Notice board read by the presentation layer.
    """

    def __init__(
        self,
        duration_seconds: float = DEFAULT_NOTICE_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.duration_seconds = duration_seconds
        self._clock = clock
        self._ids = itertools.count(1)
        self._notices: Dict[int, Notice] = {}
        self._timers: Dict[int, asyncio.TimerHandle] = {}

    def post(self, level: str, message: str, duration: Optional[float] = None) -> Notice:
        """Publica un aviso transitorio que expira solo.

        English: Post a transient notice that expires on its own.
        """
        seconds = self.duration_seconds if duration is None else duration
        notice = Notice(
            id=next(self._ids),
            level=level,
            message=message,
            expires_at=self._clock() + seconds,
        )
        self._notices[notice.id] = notice
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timers[notice.id] = loop.call_later(seconds, self.dismiss, notice.id)
        logger.debug("notice_posted", notice_id=notice.id, level=level, duration=seconds)
        return notice

    def success(self, message: str) -> Notice:
        return self.post("success", message)

    def error(self, message: str) -> Notice:
        return self.post("error", message)

    def raise_banner(self, message: str, retry: Optional[RetryAction] = None) -> Notice:
        """Publica un banner persistente con acción de reintento.

        English: Post a persistent banner with a retry action.
        """
        notice = Notice(id=next(self._ids), level="error", message=message, persistent=True, retry=retry)
        self._notices[notice.id] = notice
        logger.info("banner_raised", notice_id=notice.id, message=message)
        return notice

    async def retry(self, notice_id: int) -> Any:
        """Ejecuta el reintento del banner; lo retira si tiene éxito.

        English:
            Run the banner's retry action and dismiss the banner on success.
            A failing retry keeps the banner and re-raises.
        """
        notice = self._notices.get(notice_id)
        if notice is None or notice.retry is None:
            raise KeyError(f"No retryable banner with id {notice_id}")
        result = await notice.retry()
        self.dismiss(notice_id)
        return result

    def dismiss(self, notice_id: int) -> None:
        self._notices.pop(notice_id, None)
        timer = self._timers.pop(notice_id, None)
        if timer is not None:
            timer.cancel()

    def active(self) -> List[Notice]:
        """Avisos visibles, descartando los ya expirados.

        English: Visible notices, pruning expired ones.
        """
        now = self._clock()
        for notice in list(self._notices.values()):
            if notice.expires_at is not None and notice.expires_at <= now:
                self.dismiss(notice.id)
        return list(self._notices.values())

    def banners(self) -> List[Notice]:
        return [notice for notice in self.active() if notice.persistent]

    def clear(self) -> None:
        for notice_id in list(self._notices):
            self.dismiss(notice_id)
