"""
Passive trace recorder.

The tracer subscribes to a run's events and receives per-step timings.
Recording only enqueues; a background task writes the records. A full
buffer or a failing write drops the record and logs it, and never surfaces
as a run error.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import structlog

from ..events import Event, summarize_event
from .context import ContextSnapshot

logger = structlog.get_logger()

Sink = Callable[[dict[str, Any]], None]


class Tracer:
    """Buffered, asynchronous trace writer.

    With ``directory`` set, each run's records are appended as JSON lines to
    ``trace-<run_id>.jsonl``. A custom ``sink`` replaces the file writer.
    Written records are also kept in ``records`` when ``keep_records`` is on.
    """

    def __init__(
        self,
        directory: str | Path | None = None,
        sink: Sink | None = None,
        max_buffer: int = 1000,
        keep_records: bool = False,
    ):
        self.directory = Path(directory) if directory else None
        self._sink = sink
        self._queue: asyncio.Queue | None = None
        self._max_buffer = max_buffer
        self._task: asyncio.Task | None = None
        self.keep_records = keep_records
        self.records: list[dict[str, Any]] = []
        self.dropped = 0
        self.written = 0

    def _ensure_started(self) -> bool:
        if self._task is not None and not self._task.done():
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._max_buffer)
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
        self._task = loop.create_task(self._writer())
        return True

    def record(self, event: Event) -> None:
        """Record an emitted event."""
        self._enqueue({
            "type": "event",
            "summary": summarize_event(event),
            **event.to_dict(),
        })

    def record_step(
        self,
        run_id: str,
        turn_id: int,
        step: str,
        duration_ms: float,
        snapshot: ContextSnapshot | None = None,
        **details: Any,
    ) -> None:
        """Record the timing of one step of the turn loop."""
        record: dict[str, Any] = {
            "type": "step",
            "run_id": run_id,
            "turn_id": turn_id,
            "step": step,
            "duration_ms": round(duration_ms, 3),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **details,
        }
        if snapshot is not None:
            record["context"] = {
                "prior_messages": len(snapshot.prior_messages),
                "current_messages": len(snapshot.current_messages),
                "memories": [m.key for m in snapshot.memories],
                "documents": [d.id for d in snapshot.documents],
            }
        self._enqueue(record)

    def _enqueue(self, record: dict[str, Any]) -> None:
        try:
            if not self._ensure_started():
                raise RuntimeError("no running event loop")
            self._queue.put_nowait(record)
        except Exception as e:
            self.dropped += 1
            logger.warning(
                "Trace record dropped",
                error=str(e) or e.__class__.__name__,
                run_id=record.get("run_id"),
                dropped=self.dropped,
            )

    async def _writer(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self._write(record)
                self.written += 1
                if self.keep_records:
                    self.records.append(record)
            except Exception as e:
                self.dropped += 1
                logger.warning("Trace write failed", error=str(e), run_id=record.get("run_id"))
            finally:
                self._queue.task_done()

    async def _write(self, record: dict[str, Any]) -> None:
        if self._sink is not None:
            self._sink(record)
            return
        if self.directory is None:
            return
        path = self.directory / f"trace-{record.get('run_id', 'unknown')}.jsonl"
        line = json.dumps(record, default=str) + "\n"
        await asyncio.to_thread(_append, path, line)

    def trace_path(self, run_id: str) -> Path | None:
        if self.directory is None:
            return None
        return self.directory / f"trace-{run_id}.jsonl"

    async def flush(self) -> None:
        """Wait until every buffered record has been written."""
        if self._queue is not None and self._task is not None and not self._task.done():
            await self._queue.join()

    async def close(self) -> None:
        """Flush and stop the writer task."""
        await self.flush()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


def _append(path: Path, line: str) -> None:
    with path.open("a", encoding="utf-8") as fh:
        fh.write(line)
