import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger("human-mcp.sessions")


@dataclass
class SessionRecord:
    """Session metadata as persisted by a store.

    ``transport`` is only populated by stores that can hold live objects.
    A record without one cannot be rehydrated.
    """

    session_id: str
    created_at: float = field(default_factory=time.time)
    transport: Optional[Any] = None


class SessionStore(ABC):
    """Persistence hook for streamable HTTP sessions.

    Deployments that scale horizontally can back this with an external
    cache; the session manager only ever consults it on a cache miss.
    """

    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionRecord]: ...

    @abstractmethod
    async def set(self, session_id: str, record: SessionRecord) -> None: ...

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...

    @abstractmethod
    async def cleanup(self) -> None: ...


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._records: Dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        # dict.get is atomic, no lock needed for reads
        return self._records.get(session_id)

    async def set(self, session_id: str, record: SessionRecord) -> None:
        async with self._lock:
            self._records[session_id] = record
            logger.debug(f"Stored session record: {session_id}")

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            if self._records.pop(session_id, None) is not None:
                logger.debug(f"Deleted session record: {session_id}")

    async def cleanup(self) -> None:
        async with self._lock:
            count = len(self._records)
            self._records.clear()
        logger.info(f"SessionStore cleared ({count} records removed).")

    def __len__(self) -> int:
        return len(self._records)
