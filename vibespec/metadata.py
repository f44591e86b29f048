"""Metadata index: one lightweight summary per spec for fast listing."""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from .errors import NotFoundError, ParseError
from .models import SpecMetadata, parse_timestamp
from .storage import SpecPaths, atomic_write_yaml, read_yaml
from .vibespec_logging import log_performance, observability_hooks

logger = logging.getLogger("vibespec.metadata")


class MetadataIndex:
    """The ``_metadata.yaml`` summary list.

    Entries are unique by ``session_id``. Listings are always returned most
    recently updated first.
    """

    def __init__(self, paths: SpecPaths):
        self.paths = paths

    @property
    def path(self):
        return self.paths.metadata_path

    def ensure_index(self) -> None:
        """Create an empty index if none exists; never overwrite."""
        if self.path.exists():
            return
        atomic_write_yaml(self.path, {"specs": []})
        logger.info(f"Created metadata index at {self.path}")

    @log_performance("load_index")
    def load_index(self) -> List[SpecMetadata]:
        """Return every entry, newest ``updated`` first; empty when absent."""
        try:
            data = read_yaml(self.path)
        except NotFoundError:
            return []

        if not isinstance(data, Mapping) or not isinstance(data.get("specs"), list):
            raise ParseError(
                "Metadata index is malformed: expected a 'specs' list",
                details={"path": str(self.path)},
            )

        try:
            entries = [SpecMetadata.from_dict(item) for item in data["specs"]]
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(
                f"Metadata index contains a malformed entry: {e}",
                details={"path": str(self.path)},
            ) from e

        return sort_newest_first(entries)

    def find(self, session_id: str) -> Optional[SpecMetadata]:
        for entry in self.load_index():
            if entry.session_id == session_id:
                return entry
        return None

    @log_performance("upsert_index")
    def upsert(self, entry: SpecMetadata) -> None:
        """Replace the entry with the same session id, or append it."""
        self.ensure_index()
        entries = self.load_index()
        for position, existing in enumerate(entries):
            if existing.session_id == entry.session_id:
                entries[position] = entry
                break
        else:
            entries.append(entry)

        entries = sort_newest_first(entries)
        atomic_write_yaml(self.path, {"specs": [item.to_dict() for item in entries]})
        logger.debug(f"Index entry upserted for session {entry.session_id} ({entry.name})")
        observability_hooks.log_status_event(
            "index_updated", session_id=entry.session_id, name=entry.name, count=len(entries)
        )


def sort_newest_first(entries: List[SpecMetadata]) -> List[SpecMetadata]:
    return sorted(entries, key=lambda item: parse_timestamp(item.updated), reverse=True)
