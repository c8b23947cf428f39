from __future__ import annotations

import csv
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import yaml

from marketlink.storage import list_suggestions

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "id",
    "left_venue",
    "left_market_id",
    "right_venue",
    "right_market_id",
    "score",
    "status",
    "topic",
    "algo_version",
    "reason",
]


def export_suggestions(
    db_path: str,
    out_path: Path,
    status: Optional[str] = None,
    topic: Optional[str] = None,
    min_score: Optional[float] = None,
    limit: Optional[int] = None,
) -> int:
    """Write links for review as YAML or CSV, chosen by the file suffix."""
    links = list_suggestions(db_path, min_score=min_score, status=status, topic=topic, limit=limit)

    if out_path.suffix.lower() == ".csv":
        with out_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(CSV_COLUMNS)
            for link in links:
                row = asdict(link)
                writer.writerow([row[column] for column in CSV_COLUMNS])
    else:
        payload = {"suggestions": [asdict(link) for link in links]}
        with out_path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False)

    logger.info("Wrote %d suggestions to %s", len(links), out_path)
    return len(links)
