"""
Checkpoint storage and crash recovery.

Layout of a recovery directory:

    <recovery_dir>/
        manifest.json       grid identity, resolved seed, request fingerprint
        checkpoints.jsonl   append-only checkpoint records, one per line

Records are only ever appended. Each append is flushed and fsynced, so a
crash loses at most the record being written; a torn final line is cut off
on the next replay.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from grid_orchestrator.core.domain.errors import RecoveryIOError, RecoveryMismatchError
from grid_orchestrator.core.domain.points import ParameterPoint
from grid_orchestrator.search.checkpoint import CheckpointRecord, WalkerCursor

LOGGER = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
CHECKPOINT_FILE = "checkpoints.jsonl"


class RecoveryManifest(BaseModel):
    schema_version: Literal[1] = 1
    grid_id: str = Field(..., min_length=1)
    seed: int | None = None
    fingerprint: dict[str, Any]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(extra="forbid", frozen=True)


@dataclass(slots=True)
class RecoveryState:
    """What a replay of the checkpoint log reconstructs."""

    # Completed records, in completion order.
    completed: list[CheckpointRecord] = field(default_factory=list)
    # Walker position after the last dispatch, None if nothing was dispatched.
    cursor: WalkerCursor | None = None
    # Points dispatched without a recorded outcome, in dispatch order.
    pending: list[ParameterPoint] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.completed and self.cursor is None and not self.pending


class RecoveryStore(ABC):
    """Durable record of dispatched and completed points."""

    resumable: bool = False

    @abstractmethod
    def open(self, manifest: RecoveryManifest, *, explicit_grid_id: bool = True) -> RecoveryManifest:
        """Bind the store to a grid. Returns the effective manifest.

        With ``explicit_grid_id=False`` a previously stored grid id is adopted
        instead of being compared.
        """

    @abstractmethod
    def replay(self, *, reset_failed: bool = False) -> RecoveryState:
        """Rebuild state from the log."""

    @abstractmethod
    def append(self, record: CheckpointRecord) -> None:
        """Durably append one record. Raises ``RecoveryIOError``."""

    @abstractmethod
    def load_cursor(self) -> WalkerCursor | None:
        """Return the resumable walker cursor, if any."""

    def close(self) -> None:
        return


class NullRecoveryStore(RecoveryStore):
    """Explicit in-memory mode used when no recovery directory is configured."""

    resumable = False

    def open(self, manifest: RecoveryManifest, *, explicit_grid_id: bool = True) -> RecoveryManifest:
        return manifest

    def replay(self, *, reset_failed: bool = False) -> RecoveryState:
        return RecoveryState()

    def append(self, record: CheckpointRecord) -> None:
        return

    def load_cursor(self) -> WalkerCursor | None:
        return None


class FileRecoveryStore(RecoveryStore):
    """Append-only JSON lines checkpoint log under a recovery directory."""

    resumable = True

    def __init__(self, recovery_dir: str | Path) -> None:
        self._dir = Path(recovery_dir)
        self._manifest_path = self._dir / MANIFEST_FILE
        self._log_path = self._dir / CHECKPOINT_FILE
        self._manifest: RecoveryManifest | None = None
        self._state: RecoveryState | None = None
        self._fh: IO[str] | None = None
        self._closed = False

    @property
    def recovery_dir(self) -> Path:
        return self._dir

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def open(self, manifest: RecoveryManifest, *, explicit_grid_id: bool = True) -> RecoveryManifest:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RecoveryIOError(f"cannot create recovery dir {self._dir}: {exc}") from exc

        if self._manifest_path.exists():
            stored = self._read_manifest()
            self._check_manifest(stored, manifest, explicit_grid_id=explicit_grid_id)
            LOGGER.info(
                "Resuming grid from recovery dir",
                extra={"grid_id": stored.grid_id, "recovery_dir": str(self._dir)},
            )
            self._manifest = stored
            return stored

        self._write_manifest(manifest)
        self._manifest = manifest
        return manifest

    def _read_manifest(self) -> RecoveryManifest:
        try:
            return RecoveryManifest.model_validate_json(
                self._manifest_path.read_text(encoding="utf-8")
            )
        except OSError as exc:
            raise RecoveryIOError(f"cannot read {self._manifest_path}: {exc}") from exc
        except ValidationError as exc:
            raise RecoveryIOError(f"corrupt recovery manifest {self._manifest_path}: {exc}") from exc

    def _write_manifest(self, manifest: RecoveryManifest) -> None:
        tmp_path = self._manifest_path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, self._manifest_path)
        except OSError as exc:
            raise RecoveryIOError(f"cannot write {self._manifest_path}: {exc}") from exc

    @staticmethod
    def _check_manifest(
        stored: RecoveryManifest,
        requested: RecoveryManifest,
        *,
        explicit_grid_id: bool,
    ) -> None:
        if explicit_grid_id and requested.grid_id != stored.grid_id:
            raise RecoveryMismatchError(
                f"recovery dir belongs to grid '{stored.grid_id}', not '{requested.grid_id}'"
            )

        if requested.fingerprint != stored.fingerprint:
            raise RecoveryMismatchError(
                f"recovery dir of grid '{stored.grid_id}' was written for a different "
                "search (hyper_parameters, search_criteria or parameters changed)"
            )

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def replay(self, *, reset_failed: bool = False) -> RecoveryState:
        if self._manifest is None:
            raise RecoveryIOError("recovery store must be opened before replay")

        records = self._read_records()

        completed: dict[str, CheckpointRecord] = {}
        dispatched: dict[str, ParameterPoint] = {}
        cursor: WalkerCursor | None = None

        for record in records:
            if record.grid_id != self._manifest.grid_id:
                raise RecoveryMismatchError(
                    f"checkpoint of grid '{record.grid_id}' found in recovery dir of "
                    f"grid '{self._manifest.grid_id}'"
                )

            point = record.to_point()
            if point.hash != record.point_hash:
                raise RecoveryIOError(
                    f"checkpoint hash mismatch for point {record.point}: "
                    f"{record.point_hash} != {point.hash}"
                )

            if cursor is None or record.cursor.position >= cursor.position:
                cursor = record.cursor

            if record.kind == "dispatched":
                dispatched.setdefault(point.hash, point)
                continue

            previous = completed.get(point.hash)
            if previous is None:
                completed[point.hash] = record
            elif previous.outcome is not None and previous.outcome.status == "failed":
                # A failed point rebuilt after reset_failed: the newer outcome wins.
                del completed[point.hash]
                completed[point.hash] = record
            else:
                LOGGER.warning(
                    "Duplicate outcome in checkpoint log, keeping the first",
                    extra={"point_hash": point.hash},
                )

        if reset_failed:
            for key in [k for k, rec in completed.items() if rec.outcome.status == "failed"]:
                del completed[key]

        pending = [point for key, point in dispatched.items() if key not in completed]

        state = RecoveryState(
            completed=list(completed.values()),
            cursor=cursor,
            pending=pending,
        )
        self._state = state

        LOGGER.info(
            "Replayed checkpoint log",
            extra={
                "grid_id": self._manifest.grid_id,
                "records": len(records),
                "completed": len(state.completed),
                "pending": len(state.pending),
                "cursor": cursor.model_dump() if cursor else None,
            },
        )
        return state

    def _read_records(self) -> list[CheckpointRecord]:
        if not self._log_path.exists():
            return []

        try:
            raw = self._log_path.read_bytes()
        except OSError as exc:
            raise RecoveryIOError(f"cannot read {self._log_path}: {exc}") from exc

        # Anything after the last newline is a torn write from a crash.
        valid_length = raw.rfind(b"\n") + 1
        if valid_length < len(raw):
            LOGGER.warning(
                "Discarding torn checkpoint record",
                extra={"path": str(self._log_path), "bytes": len(raw) - valid_length},
            )
            self._truncate(valid_length)

        records: list[CheckpointRecord] = []
        lines = raw[:valid_length].decode("utf-8").splitlines()
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                records.append(CheckpointRecord.model_validate_json(line))
            except ValidationError as exc:
                raise RecoveryIOError(
                    f"corrupt checkpoint record at {self._log_path}:{lineno}: {exc}"
                ) from exc
        return records

    def _truncate(self, length: int) -> None:
        try:
            with self._log_path.open("r+b") as fh:
                fh.truncate(length)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError as exc:
            raise RecoveryIOError(f"cannot repair {self._log_path}: {exc}") from exc

    def load_cursor(self) -> WalkerCursor | None:
        if self._state is None:
            self.replay()
        assert self._state is not None
        return self._state.cursor

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append(self, record: CheckpointRecord) -> None:
        if self._closed:
            raise RecoveryIOError(f"recovery store {self._dir} is closed")

        line = record.model_dump_json() + "\n"
        try:
            if self._fh is None:
                self._fh = self._log_path.open("a", encoding="utf-8")
            self._fh.write(line)
            self._fh.flush()
            os.fsync(self._fh.fileno())
        except OSError as exc:
            raise RecoveryIOError(
                f"cannot append checkpoint to {self._log_path}: {exc}"
            ) from exc

    def close(self) -> None:
        if self._closed:
            return
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                LOGGER.warning("Failed to close checkpoint log", extra={"path": str(self._log_path)})
        self._closed = True


def open_recovery_store(recovery_dir: str | Path | None) -> RecoveryStore:
    """Return a file-backed store, or the in-memory no-op when no dir is set."""
    if recovery_dir is None:
        return NullRecoveryStore()
    return FileRecoveryStore(recovery_dir)
