"""
Batch Checkpointing

Tracks the highest input offset whose record has been fully processed
(normalized, validated and merged or rejected) so a cancelled or aborted
run resumes without reprocessing completed records.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class CheckpointState(BaseModel):
    """Persisted checkpoint"""
    source: Optional[str] = None
    last_offset: int = -1
    records_done: int = 0
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Checkpoint:
    """
    Resumable progress marker for one input source.

    Without a path the checkpoint lives only in memory. `on_save` runs
    before every write of the checkpoint file, so state the offsets depend
    on is on disk before the offsets claim it.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        source: Optional[str] = None,
        interval: int = 1,
        on_save: Optional[Callable[[], None]] = None,
    ):
        self.path = Path(path) if path else None
        self.interval = max(interval, 1)
        self.on_save = on_save
        self._pending = 0
        self.state = self._load(source)

    def _load(self, source: Optional[str]) -> CheckpointState:
        if self.path is None or not self.path.exists():
            return CheckpointState(source=source)

        state = CheckpointState.model_validate_json(self.path.read_text(encoding="utf-8"))
        if source is not None and state.source not in (None, source):
            logger.warning(
                "Checkpoint belongs to another source, starting over",
                checkpoint_source=state.source,
                source=source,
            )
            return CheckpointState(source=source)

        logger.info("Resuming from checkpoint", last_offset=state.last_offset, path=str(self.path))
        return state

    def bind(self, source: str) -> None:
        """
        Tie progress to an input source.

        Progress recorded for a different source is discarded; progress
        without a source is adopted.
        """
        if self.state.source not in (None, source):
            logger.warning(
                "Checkpoint belongs to another source, starting over",
                checkpoint_source=self.state.source,
                source=source,
            )
            self.state = CheckpointState(source=source)
            self._pending = 0
            return
        self.state.source = source

    @property
    def last_offset(self) -> int:
        return self.state.last_offset

    def is_done(self, offset: int) -> bool:
        return offset <= self.state.last_offset

    def mark(self, offset: int) -> None:
        """Record that `offset` is fully processed"""
        if offset > self.state.last_offset:
            self.state.last_offset = offset
        self.state.records_done += 1
        self._pending += 1
        if self._pending >= self.interval:
            self.save()

    def save(self) -> None:
        self._pending = 0
        if self.path is None:
            return
        if self.on_save is not None:
            self.on_save()
        self.state.updated_at = datetime.now(timezone.utc)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(self.state.model_dump_json(), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        """Forget progress, e.g. after a completed run"""
        self.state = CheckpointState(source=self.state.source)
        self._pending = 0
        if self.path is not None and self.path.exists():
            self.path.unlink()
