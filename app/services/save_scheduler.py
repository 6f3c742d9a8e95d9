"""
Debounced answer writes.

``SaveScheduler`` accepts ``(key, value, delay)`` commands. The latest value
per key is written once the key has been quiet for ``delay`` seconds, or
immediately on ``flush``. At most one write per key is in flight; values
scheduled during a write are written right after it. A failed write keeps the
value pending (``status`` reports it with ``last_error``) and is retried by
the next ``schedule`` or ``flush`` of that key.
"""
import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional

from app.core.logging import get_logger

logger = get_logger(__name__)

Writer = Callable[[Hashable, Any], Awaitable[Any]]

# Finished saves remembered for status() after their entry is released
RECENT_SAVES_LIMIT = 256


@dataclass
class SaveStatus:
    key: Hashable
    state: str  # idle | pending | saving | saved | error
    value: Any = None
    result: Any = None
    last_error: Optional[str] = None
    saved_at: Optional[datetime] = None


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    value: Any = None
    dirty: bool = False
    saving: bool = False
    timer: Optional[asyncio.Task] = None
    result: Any = None
    last_error: Optional[Exception] = None
    saved_at: Optional[datetime] = None


class SaveScheduler:
    def __init__(self, writer: Writer, default_delay: float = 0.8):
        self._writer = writer
        self.default_delay = default_delay
        self._entries: Dict[Hashable, _Entry] = {}
        self._recent: "OrderedDict[Hashable, SaveStatus]" = OrderedDict()
        self._closed = False

    def _entry(self, key) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        return entry

    def schedule(self, key: Hashable, value: Any, delay: Optional[float] = None) -> SaveStatus:
        """Replace the pending value for ``key`` and restart its quiet period."""
        if self._closed:
            raise RuntimeError("SaveScheduler is closed")
        self._recent.pop(key, None)
        entry = self._entry(key)
        entry.value = value
        entry.dirty = True
        self._cancel_timer(entry)
        wait = self.default_delay if delay is None else delay
        entry.timer = asyncio.get_running_loop().create_task(self._fire_later(key, entry, wait))
        return self.status(key)

    async def flush(self, key: Hashable) -> SaveStatus:
        """Write the pending value for ``key`` now. Raises the writer's error on failure."""
        entry = self._entries.get(key)
        if entry is None:
            return self.status(key)
        self._cancel_timer(entry)
        await self._drain(key, entry, raise_errors=True)
        return self.status(key)

    async def flush_all(self) -> List[SaveStatus]:
        """Write every pending value. Failures are recorded, not raised."""
        results = []
        for key, entry in list(self._entries.items()):
            self._cancel_timer(entry)
            await self._drain(key, entry, raise_errors=False)
            results.append(self.status(key))
        return results

    def status(self, key: Hashable) -> SaveStatus:
        entry = self._entries.get(key)
        if entry is None:
            return self._recent.get(key) or SaveStatus(key=key, state="idle")
        if entry.saving:
            state = "saving"
        elif entry.dirty and entry.last_error is not None:
            state = "error"
        elif entry.dirty:
            state = "pending"
        else:
            state = "saved"
        return SaveStatus(
            key=key,
            state=state,
            value=entry.value,
            result=entry.result,
            last_error=str(entry.last_error) if entry.last_error is not None else None,
            saved_at=entry.saved_at,
        )

    def pending_keys(self) -> List[Hashable]:
        return [key for key, entry in self._entries.items() if entry.dirty]

    async def close(self):
        """Flush what is pending and refuse further schedules."""
        self._closed = True
        statuses = await self.flush_all()
        failed = [s.key for s in statuses if s.state == "error"]
        if failed:
            logger.error(f"SaveScheduler closed with {len(failed)} unsaved value(s): {failed}")

    def _cancel_timer(self, entry: _Entry):
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None

    async def _fire_later(self, key, entry: _Entry, delay: float):
        await asyncio.sleep(delay)
        # Past this point a new schedule must not cancel the write
        entry.timer = None
        await self._drain(key, entry, raise_errors=False)

    async def _drain(self, key, entry: _Entry, raise_errors: bool):
        async with entry.lock:
            while entry.dirty:
                value = entry.value
                entry.dirty = False
                entry.saving = True
                try:
                    entry.result = await self._writer(key, value)
                except Exception as exc:
                    # Keep the unsaved value so a retry writes it
                    if not entry.dirty:
                        entry.dirty = True
                    entry.last_error = exc
                    logger.warning(f"Save of {key!r} failed: {exc}")
                    if raise_errors:
                        raise
                    return
                finally:
                    entry.saving = False
                entry.last_error = None
                entry.saved_at = datetime.now(timezone.utc)
        self._release(key, entry)

    def _release(self, key, entry: _Entry):
        """Forget a key whose latest value is saved and that has nothing queued."""
        if entry.dirty or entry.timer is not None or entry.last_error is not None or entry.lock.locked():
            return
        if self._entries.get(key) is not entry:
            return
        self._recent[key] = SaveStatus(key=key, state="saved", result=entry.result, saved_at=entry.saved_at)
        del self._entries[key]
        while len(self._recent) > RECENT_SAVES_LIMIT:
            self._recent.popitem(last=False)
