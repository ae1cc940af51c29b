"""Candidate sources: where ingestion runs get their releases from."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from releasewatch.core.exceptions import CollectionError
from releasewatch.core.logger import get_logger
from releasewatch.core.models import ReleaseCandidate


class CandidateSource(ABC):
    """Base class for anything that yields release candidates.

    Feed and scrape fetchers live outside this package; they either
    subclass this or hand candidates to ``IngestionRun.run`` directly.
    """

    name: str = "base"

    def __init__(self) -> None:
        self._logger = get_logger(type(self).__name__)

    @abstractmethod
    def collect(self) -> list[ReleaseCandidate]:
        """Return the candidates currently available.

        Raises:
            CollectionError: If the source cannot be read.
        """


class JsonLinesCandidateSource(CandidateSource):
    """Read candidates from a ``.jsonl`` or ``.json`` file.

    ``.jsonl`` holds one candidate object per line. ``.json`` holds either
    a list of candidate objects or ``{"candidates": [...]}``. Candidates
    without a ``source_name`` get the file stem.

    Args:
        path: File to read.
        source_name: Overrides the default attribution name.
    """

    name = "file"

    def __init__(self, path: str | Path, source_name: str | None = None) -> None:
        super().__init__()
        self._path = Path(path)
        self._source_name = source_name or self._path.stem

    def collect(self) -> list[ReleaseCandidate]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise CollectionError(
                f"Cannot read candidate file: {self._path}",
                {"path": str(self._path), "error": str(e)},
            ) from e

        if self._path.suffix == ".jsonl":
            entries = self._parse_lines(text)
        else:
            entries = self._parse_document(text)

        candidates = []
        for position, entry in entries:
            try:
                candidate = ReleaseCandidate.model_validate(entry)
            except ValidationError as e:
                raise CollectionError(
                    "Invalid candidate",
                    {"path": str(self._path), "entry": position, "error": str(e)},
                ) from e
            if not candidate.source_name:
                candidate.source_name = self._source_name
            candidates.append(candidate)

        self._logger.info(
            "candidates_collected",
            path=str(self._path),
            count=len(candidates),
        )
        return candidates

    def _parse_lines(self, text: str) -> list[tuple[int, Any]]:
        entries = []
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entries.append((lineno, json.loads(line)))
            except json.JSONDecodeError as e:
                raise CollectionError(
                    "Invalid JSON line",
                    {"path": str(self._path), "line": lineno, "error": str(e)},
                ) from e
        return entries

    def _parse_document(self, text: str) -> list[tuple[int, Any]]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CollectionError(
                "Invalid JSON document",
                {"path": str(self._path), "error": str(e)},
            ) from e
        if isinstance(data, dict):
            data = data.get("candidates", [])
        if not isinstance(data, list):
            raise CollectionError(
                "Expected a list of candidates",
                {"path": str(self._path), "type": type(data).__name__},
            )
        return list(enumerate(data))
