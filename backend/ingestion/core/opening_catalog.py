"""Opening catalog loader.

The model was trained on a fixed set of openings per colour. Each set ships
as `opening_name_to_training_id_{color}.json` ({"Opening Name": training_id})
in the artifacts directory. Games whose opening isn't in the catalog can't be
scored, so failing to load it stops the run before any network I/O.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from ingestion.core.errors import ReferenceDataError
from recommender.schemas.stats import Color

logger = logging.getLogger("openingrec.ingestion.catalog")


@dataclass(frozen=True, slots=True)
class OpeningCatalog:
    color: Color
    names_to_training_ids: Mapping[str, int]

    def __len__(self) -> int:
        return len(self.names_to_training_ids)

    def __contains__(self, name: object) -> bool:
        return name in self.names_to_training_ids


def catalog_path(artifacts_dir: Path, color: Color) -> Path:
    return Path(artifacts_dir) / f"opening_name_to_training_id_{Color(color).value}.json"


def load_opening_catalog(artifacts_dir: Path, color: Color) -> OpeningCatalog:
    path = catalog_path(artifacts_dir, color)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ReferenceDataError(f"Failed to load opening names for {Color(color).value}: {e}") from e

    if not isinstance(raw, dict) or not raw:
        raise ReferenceDataError(f"Invalid opening catalog {path}: expected a non-empty mapping.")

    mapping: dict[str, int] = {}
    for name, training_id in raw.items():
        if not isinstance(training_id, int) or isinstance(training_id, bool):
            raise ReferenceDataError(f"Invalid training id for {name!r} in {path}: {training_id!r}")
        mapping[str(name)] = training_id

    logger.info(f"Loaded {len(mapping)} valid opening names for {Color(color).value} player")
    return OpeningCatalog(color=Color(color), names_to_training_ids=mapping)
