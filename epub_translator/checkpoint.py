"""Checkpoint / resume persistence.

The resume record marks the last fully processed node and carries every
translated fragment seen so far, so a restarted run can rebuild the exact
same package without calling the translation service again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .cache import KeyValueStore

logger = logging.getLogger(__name__)

RESUME_KEY = "resume-record"


@dataclass
class ResumeRecord:
    """Durable progress marker.

    Attributes:
        source_filename: Name of the package being translated
        document_index: Index of the in-progress document (reading order)
        node_index: Last fully processed node in that document, -1 if none
        translated_nodes: Per document path, translated fragment per node
            index (None for nodes left untranslated)
        settings_snapshot: Settings (and style profile) of the run
        last_update: ISO timestamp of the last save
    """

    source_filename: str
    document_index: int = 0
    node_index: int = -1
    translated_nodes: dict[str, list[str | None]] = field(default_factory=dict)
    settings_snapshot: dict[str, Any] = field(default_factory=dict)
    last_update: str = field(default_factory=lambda: datetime.now().isoformat())

    def get(self, path: str, node_index: int) -> str | None:
        entries = self.translated_nodes.get(path)
        if entries is None or node_index >= len(entries):
            return None
        return entries[node_index]

    def put(self, path: str, node_index: int, fragment: str | None) -> None:
        entries = self.translated_nodes.setdefault(path, [])
        if node_index >= len(entries):
            entries.extend([None] * (node_index + 1 - len(entries)))
        entries[node_index] = fragment

    def is_settled(self, document_index: int, node_index: int) -> bool:
        """True when (document_index, node_index) lies in the completed prefix."""
        if document_index != self.document_index:
            return document_index < self.document_index
        return node_index <= self.node_index

    def advance(self, document_index: int, node_index: int) -> None:
        """Move the marker forward; re-applying the settled prefix never moves it back."""
        if (document_index, node_index) > (self.document_index, self.node_index):
            self.document_index = document_index
            self.node_index = node_index

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_filename": self.source_filename,
            "document_index": self.document_index,
            "node_index": self.node_index,
            "translated_nodes": self.translated_nodes,
            "settings_snapshot": self.settings_snapshot,
            "last_update": self.last_update,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResumeRecord":
        return cls(
            source_filename=data["source_filename"],
            document_index=int(data.get("document_index", 0)),
            node_index=int(data.get("node_index", -1)),
            translated_nodes={
                path: list(entries) for path, entries in data.get("translated_nodes", {}).items()
            },
            settings_snapshot=dict(data.get("settings_snapshot", {})),
            last_update=data.get("last_update", datetime.now().isoformat()),
        )


class CheckpointManager:
    """Saves, loads and clears the resume record in a key-value store."""

    # Settings that must match for a record to be reused
    COMPATIBILITY_KEYS = ("model", "source_language", "target_language", "target_tags")

    def __init__(self, store: KeyValueStore, key: str = RESUME_KEY):
        self.store = store
        self.key = key
        self.saves = 0

    def save(self, record: ResumeRecord) -> None:
        record.last_update = datetime.now().isoformat()
        self.store.set(self.key, record.to_dict())
        self.saves += 1

    def load(self) -> ResumeRecord | None:
        """
        Load the saved record.

        Returns:
            ResumeRecord, or None when nothing is saved or the data is unreadable
        """
        data = self.store.get(self.key)
        if data is None:
            return None

        try:
            record = ResumeRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Discarding unreadable resume record: {e}")
            return None

        logger.info(
            f"Resume record loaded: {record.source_filename} at document "
            f"{record.document_index}, node {record.node_index}"
        )
        return record

    def clear(self) -> None:
        self.store.delete(self.key)
        logger.debug("Resume record cleared")

    def can_resume(
        self, record: ResumeRecord, source_filename: str, settings_snapshot: dict[str, Any]
    ) -> bool:
        """Check that a record belongs to this file and compatible settings."""
        if record.source_filename != source_filename:
            logger.info(
                f"Resume record belongs to another file ({record.source_filename})"
            )
            return False

        saved = record.settings_snapshot.get("settings", {})
        current = settings_snapshot.get("settings", {})
        for key in self.COMPATIBILITY_KEYS:
            if saved.get(key) != current.get(key):
                logger.warning(f"Resume record incompatible: '{key}' changed")
                return False

        return True
