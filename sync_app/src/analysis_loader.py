"""
Coach analysis loader: reads analysis JSON files into the analyses table.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from shared.database import LocalStore
from ..config.settings import settings
from .errors import ObsoleteSchema
from .schema_migrator import obsolete_fields


REQUIRED_FIELDS = ("version", "metadata", "session", "analysis", "verdict")


def validate_analysis(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("Analysis must be a JSON object")
    for name in REQUIRED_FIELDS:
        if name not in data:
            raise ValueError(f"Missing required field: {name}")
    metadata = data["metadata"]
    if not isinstance(metadata, dict):
        raise ValueError("metadata must be an object")
    activity_id = metadata.get("activityId")
    if not activity_id:
        raise ValueError("Missing required field: metadata.activityId")
    stale = obsolete_fields(data)
    if stale:
        raise ObsoleteSchema(
            f"Analysis {activity_id} uses the old schema ({', '.join(stale)} not localized)",
            activity_id=str(activity_id),
            field=stale[0],
        )
    return data


class AnalysisLoader:
    def __init__(self, store: LocalStore, directory: Optional[Union[str, Path]] = None) -> None:
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.directory = Path(directory or settings.analyses_dir)

    def add_analysis(self, data: Dict[str, Any]) -> None:
        self.store.put_analysis(validate_analysis(data))

    def load_directory(self) -> Dict[str, Any]:
        """Upsert every ``*.json`` analysis in the directory; bad files are skipped."""
        loaded, errors = 0, []
        if not self.directory.is_dir():
            self.logger.warning(f"⚠️ Analyses directory not found: {self.directory}")
            return {"loaded": 0, "errors": []}

        for path in sorted(self.directory.glob("*.json")):
            try:
                self.add_analysis(json.loads(path.read_text(encoding="utf-8")))
                loaded += 1
            except (ValueError, ObsoleteSchema) as e:
                self.logger.warning(f"⚠️ Skipping {path.name}: {e}")
                errors.append(f"{path.name}: {e}")

        self.logger.info(f"📊 Loaded {loaded} analyses from {self.directory}")
        return {"loaded": loaded, "errors": errors}

    def latest(self) -> Optional[Dict[str, Any]]:
        analyses = self.store.all_analyses()
        return analyses[0] if analyses else None

    def by_date_range(self, oldest: str, newest: str) -> List[Dict[str, Any]]:
        return self.store.analyses_by_date_range(oldest, newest)
