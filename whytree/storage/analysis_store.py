# whytree/storage/analysis_store.py

import json
from typing import List, Optional

from whytree.core.models import Analysis
from whytree.storage.blob import BlobStorage
from whytree.utils.logging import get_logger

logger = get_logger(__name__)

STORAGE_KEY = "logic-tree-analyses"


def _sorted(analyses: List[Analysis]) -> List[Analysis]:
    # newest first
    return sorted(analyses, key=lambda a: a.updated_at, reverse=True)


def serialize_analyses(analyses: List[Analysis]) -> str:
    return json.dumps([a.to_dict() for a in analyses], ensure_ascii=False)


def deserialize_analyses(blob: str) -> List[Analysis]:
    """
    Parse a stored blob. Raises ValueError if the blob is not a JSON array;
    individual malformed records are skipped.
    """
    data = json.loads(blob)
    if not isinstance(data, list):
        raise ValueError("Stored analyses are not a JSON array.")

    analyses: List[Analysis] = []
    for idx, raw in enumerate(data):
        if not isinstance(raw, dict):
            logger.warning("Skipping stored analysis #%d: not an object.", idx)
            continue
        try:
            analyses.append(Analysis.from_dict(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed stored analysis #%d: %s", idx, e)
    return analyses


class AnalysisStore:
    """
    Saved analyses, kept as one JSON array under a fixed storage key.

    Every write rewrites the whole collection. Failures never raise: they are
    logged, reported through `error`, and the in-memory list stays as it was.
    """

    def __init__(self, storage: BlobStorage, key: str = STORAGE_KEY) -> None:
        self.storage = storage
        self.key = key
        self.error: Optional[str] = None
        self.analyses: List[Analysis] = self.load()

    def load(self) -> List[Analysis]:
        try:
            blob = self.storage.get(self.key)
            if not blob:
                analyses: List[Analysis] = []
            else:
                analyses = _sorted(deserialize_analyses(blob))
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error("Failed to load analyses from storage: %s", e)
            analyses = []
        self.analyses = analyses
        return list(analyses)

    def _write(self, updated: List[Analysis], action: str) -> bool:
        try:
            self.storage.set(self.key, serialize_analyses(updated))
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to %s: %s", action, e)
            self.error = f"Failed to {action}."
            return False
        self.analyses = updated
        self.error = None
        return True

    def save(self, analysis: Analysis) -> bool:
        """Insert or replace by id; stores a copy, never the live object."""
        record = analysis.copy()
        updated = list(self.analyses)
        for idx, existing in enumerate(updated):
            if existing.id == record.id:
                updated[idx] = record
                break
        else:
            updated.insert(0, record)

        ok = self._write(_sorted(updated), "save the analysis")
        if ok:
            logger.info("Saved analysis id=%s (%d total).", record.id, len(self.analyses))
        return ok

    def delete(self, analysis_id: str) -> bool:
        updated = [a for a in self.analyses if a.id != analysis_id]
        ok = self._write(updated, "delete the analysis")
        if ok:
            logger.info("Deleted analysis id=%s (%d left).", analysis_id, len(self.analyses))
        return ok

    def clear(self) -> bool:
        try:
            self.storage.remove(self.key)
        except OSError as e:
            logger.error("Failed to clear analysis history: %s", e)
            self.error = "Failed to clear the history."
            return False
        self.analyses = []
        self.error = None
        logger.info("Cleared analysis history.")
        return True

    def get_by_id(self, analysis_id: str) -> Optional[Analysis]:
        for analysis in self.analyses:
            if analysis.id == analysis_id:
                return analysis
        return None

    def find_by_prefix(self, prefix: str) -> List[Analysis]:
        """Ids are long; the CLI lets users type a unique prefix."""
        return [a for a in self.analyses if a.id.startswith(prefix)]
