"""Checkpointing for streaming regulation extraction."""
import json
from pathlib import Path
from typing import Any, Dict, Optional

from utils.logger import setup_logger
from extraction.models import ExtractedRegulation
import config

logger = setup_logger(__name__)


class ExtractionCheckpoint:
    """Records each delivered entry so an interrupted document can resume.

    Entries are keyed by ``"<chunk_index>:<entry_position>"``; the entry
    parser is deterministic, so the same document yields the same keys.
    """

    def __init__(self, document_id: str, checkpoint_dir: Path = config.CHECKPOINT_DIR):
        """Initialize checkpoint manager.

        Args:
            document_id: Unique ID for the source document
            checkpoint_dir: Directory to store checkpoints
        """
        self.document_id = document_id
        self.checkpoint_dir = Path(checkpoint_dir)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self.checkpoint_file = self.checkpoint_dir / f"{document_id}_checkpoint.json"
        self._data: Optional[Dict[str, Any]] = None

    @staticmethod
    def entry_key(chunk_index: int, position: int) -> str:
        return f"{chunk_index}:{position}"

    def save(self, data: Dict[str, Any]) -> None:
        """Save checkpoint data.

        Args:
            data: Checkpoint data including delivered entries
        """
        try:
            with open(self.checkpoint_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            self._data = data
        except OSError as e:
            logger.warning(f"Failed to save checkpoint: {e}")

    def load(self) -> Optional[Dict[str, Any]]:
        """Load checkpoint data if exists.

        Returns:
            Checkpoint data or None if no checkpoint exists
        """
        if self._data is not None:
            return self._data
        if not self.checkpoint_file.exists():
            return None

        try:
            with open(self.checkpoint_file, 'r', encoding='utf-8') as f:
                self._data = json.load(f)
            logger.info(
                f"✓ Checkpoint loaded: {len(self._data.get('entries', {}))} entries already extracted"
            )
            return self._data
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load checkpoint: {e}")
            return None

    def get_entry(self, chunk_index: int, position: int) -> Optional[Dict[str, Any]]:
        """Return the stored outcome for an entry, or None if it was never delivered.

        The outcome is ``{"regulation": {...}}`` or ``{"regulation": None}``
        for entries the backend judged to hold no regulation.
        """
        data = self.load() or {}
        return data.get("entries", {}).get(self.entry_key(chunk_index, position))

    def record_entry(
        self,
        chunk_index: int,
        position: int,
        regulation: Optional[ExtractedRegulation]
    ) -> None:
        """Persist one delivered entry."""
        data = self.load() or {"document_id": self.document_id, "entries": {}}
        data.setdefault("entries", {})[self.entry_key(chunk_index, position)] = {
            "regulation": regulation.model_dump(mode="json") if regulation else None
        }
        self.save(data)

    def clear(self) -> None:
        """Delete checkpoint file."""
        self._data = None
        if self.checkpoint_file.exists():
            self.checkpoint_file.unlink()
            logger.info("Checkpoint cleared")

    def exists(self) -> bool:
        """Check if checkpoint exists."""
        return self.checkpoint_file.exists()
