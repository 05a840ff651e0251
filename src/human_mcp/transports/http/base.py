import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

logger = logging.getLogger("human-mcp.transport")

CloseListener = Callable[["ManagedTransport", Optional[BaseException]], None]


class ManagedTransport(ABC):
    """A transport that tells its owner when it goes away.

    Listeners receive ``(transport, error)``; ``error`` is None for an orderly
    close. Delivery happens at most once per transport, whichever of close or
    error fires first.
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        self.created_at = time.time()
        self._listeners: List[CloseListener] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: CloseListener) -> None:
        self._listeners.append(listener)

    def _notify_closed(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        for listener in list(self._listeners):
            try:
                listener(self, error)
            except Exception:
                logger.exception(f"Close listener failed for transport {self.session_id}")
        self._listeners.clear()

    @abstractmethod
    async def close(self) -> None: ...
