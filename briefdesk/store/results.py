from __future__ import annotations

import threading
from typing import Any, Callable, List, Optional, Tuple

from briefdesk.models import ResultEntry


Subscriber = Callable[[ResultEntry], None]
Unsubscribe = Callable[[], None]


class _Subscription:
    __slots__ = ("callback",)

    def __init__(self, callback: Subscriber) -> None:
        self.callback = callback


class ResultStore:
    """
    Process-wide buffer of accepted agent callbacks with live publish/subscribe.

    - newest-first, capped at `max_entries` (oldest evicted first)
    - subscribers are notified synchronously from `add_result`, in insertion order
    - a failing subscriber never affects the store or other subscribers

    FastAPI runs sync handlers on a thread pool, so every mutation + notification round runs under one
    re-entrant lock (a subscriber may subscribe/unsubscribe from inside its own callback).
    Subscribers must not block: the streaming endpoint hands entries to its event loop and returns.
    """

    def __init__(self, *, max_entries: int = 20) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = int(max_entries)
        self._lock = threading.RLock()
        self._results: List[ResultEntry] = []
        self._subs: List[_Subscription] = []
        self.notify_failures = 0

    def add_result(self, payload: Any, *, source_ip: Optional[str] = None) -> ResultEntry:
        with self._lock:
            entry = ResultEntry(payload=payload, source_ip=source_ip)
            self._results.insert(0, entry)
            del self._results[self.max_entries :]
            # Snapshot: subscribers added during this round only see later entries.
            for sub in tuple(self._subs):
                if sub not in self._subs:
                    continue
                try:
                    sub.callback(entry)
                except Exception:  # noqa: BLE001
                    self.notify_failures += 1
            return entry

    def get_results(self) -> List[ResultEntry]:
        with self._lock:
            return list(self._results)

    def get_result(self, entry_id: str) -> Optional[ResultEntry]:
        with self._lock:
            for entry in self._results:
                if entry.id == entry_id:
                    return entry
        return None

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        sub = _Subscription(callback)
        with self._lock:
            self._subs.append(sub)

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._subs.remove(sub)
                except ValueError:
                    pass

        return _unsubscribe

    def snapshot_and_subscribe(self, callback: Subscriber) -> Tuple[List[ResultEntry], Unsubscribe]:
        """
        Take the current buffer and register `callback` in one step, so every entry shows up exactly
        once: either in the snapshot or through the callback.
        """
        with self._lock:
            return self.get_results(), self.subscribe(callback)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)
