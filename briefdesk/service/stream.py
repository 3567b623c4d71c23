from __future__ import annotations

import asyncio
import json
import time
from typing import AsyncGenerator, Awaitable, Callable, Optional

from briefdesk.models import ResultEntry
from briefdesk.store.results import ResultStore


SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    # nginx: don't buffer the stream
    "X-Accel-Buffering": "no",
}


def encode_entry(entry: ResultEntry) -> Optional[str]:
    try:
        return json.dumps(entry.to_wire(), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError, RecursionError):
        return None


def format_entry_frame(entry: ResultEntry) -> Optional[str]:
    """
    One `data:` frame per entry. Returns None when the entry cannot be serialized; callers skip it.
    """
    data = encode_entry(entry)
    if data is None:
        return None
    return f"data: {data}\n\n"


def format_heartbeat_frame(marker: str) -> str:
    return f"event: heartbeat\ndata: {marker}\n\n"


async def stream_results_sse(
    store: ResultStore,
    *,
    heartbeat_interval_s: float = 25.0,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncGenerator[str, None]:
    """
    Replay the buffered results (oldest first), then forward every new result live, with a named
    heartbeat event right after the replay and every `heartbeat_interval_s` seconds afterwards.

    The subscription is released in `finally`, so closing the generator (client disconnect,
    cancellation, server shutdown) never leaks it.
    """
    if heartbeat_interval_s <= 0:
        raise ValueError("heartbeat_interval_s must be > 0")
    loop = asyncio.get_running_loop()
    q: "asyncio.Queue[ResultEntry]" = asyncio.Queue()

    def _on_result(entry: ResultEntry) -> None:
        # May run on a worker thread (sync ingest handler); hop onto this stream's loop.
        loop.call_soon_threadsafe(q.put_nowait, entry)

    backlog, unsubscribe = store.snapshot_and_subscribe(_on_result)
    try:
        for entry in reversed(backlog):
            frame = format_entry_frame(entry)
            if frame is not None:
                yield frame
        yield format_heartbeat_frame("connected")

        next_ping = time.monotonic() + heartbeat_interval_s
        while True:
            timeout = max(0.0, next_ping - time.monotonic())
            try:
                entry = await asyncio.wait_for(q.get(), timeout=timeout)
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    return
                next_ping = time.monotonic() + heartbeat_interval_s
                yield format_heartbeat_frame("ping")
                continue
            frame = format_entry_frame(entry)
            if frame is not None:
                yield frame
    finally:
        unsubscribe()
