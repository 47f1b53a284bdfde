"""Downstream import sinks and pre-import validation."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from roster_merge.normalization.values import is_empty
from roster_merge.pipeline.result import PlannedRecord

logger = logging.getLogger(__name__)


class ImportSink(Protocol):
    """Receives merged records per entity type, in dependency order."""

    async def write(
        self, entity_type: str, target_table: str | None, records: Sequence[PlannedRecord]
    ) -> int:
        """Persist ``records``; return how many were written."""
        ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


def find_missing_required(
    records: Sequence[dict[str, Any]], required_fields: Sequence[str]
) -> dict[int, list[str]]:
    """Record position → required fields it lacks. Empty when all pass."""
    missing: dict[int, list[str]] = {}
    for i, record in enumerate(records):
        absent = [name for name in required_fields if is_empty(record.get(name))]
        if absent:
            missing[i] = absent
    return missing


class JsonLinesSink:
    """Writes one ``<entity_type>.jsonl`` file per entity type.

    Writes are staged as ``.jsonl.part`` files; ``commit`` publishes them
    and ``rollback`` discards them.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._staged: list[Path] = []

    @property
    def directory(self) -> Path:
        return self._directory

    async def write(
        self, entity_type: str, target_table: str | None, records: Sequence[PlannedRecord]
    ) -> int:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._directory / f"{entity_type}.jsonl.part"
        with path.open("a", encoding="utf-8") as fh:
            for record in records:
                line = {"target_table": target_table, **record.model_dump(mode="json")}
                fh.write(json.dumps(line, ensure_ascii=False) + "\n")
        if path not in self._staged:
            self._staged.append(path)
        return len(records)

    async def commit(self) -> None:
        for part in self._staged:
            part.replace(part.with_suffix(""))
        logger.info("Committed %d file(s) to %s", len(self._staged), self._directory)
        self._staged.clear()

    async def rollback(self) -> None:
        for part in self._staged:
            part.unlink(missing_ok=True)
        logger.info("Rolled back %d staged file(s)", len(self._staged))
        self._staged.clear()
