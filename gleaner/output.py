"""Final CSV and JSON renderings of the combined review set."""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from gleaner.common.exceptions import CheckpointIOError
from gleaner.config import StorageConfig
from gleaner.data_types import Record

logger = logging.getLogger(__name__)


def flatten(records_by_slug: Mapping[str, Iterable[Record]]) -> list[Record]:
    """Concatenate per-app review lists, preserving mapping order."""
    flat: list[Record] = []
    for records in records_by_slug.values():
        flat.extend(records)
    return flat


def write_csv(records: Iterable[Record], path: Path) -> Path:
    """Write reviews as CSV with a titled header row.

    Columns follow Record.COLUMNS; absent values are written as empty
    strings.
    """
    fieldnames = [name for name, _ in Record.COLUMNS]
    header = dict(Record.COLUMNS)
    count = 0
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, restval="")
            writer.writerow(header)
            for record in records:
                writer.writerow(record.to_row())
                count += 1
    except OSError as e:
        raise CheckpointIOError(path, f"CSV write failed: {e}") from e

    logger.info(f"CSV written to {path} ({count} reviews)")
    return path


def write_json(records: Iterable[Record], path: Path) -> Path:
    """Write reviews as a JSON array of field maps, in order."""
    rows = [record.to_row() for record in records]
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(rows, indent=2, ensure_ascii=False), encoding="utf-8"
        )
    except OSError as e:
        raise CheckpointIOError(path, f"JSON write failed: {e}") from e

    logger.info(f"JSON written to {path} ({len(rows)} reviews)")
    return path


def write_outputs(
    records: list[Record], storage: StorageConfig
) -> tuple[Path, Path]:
    """Write both final outputs into the data directory.

    Returns:
        (csv_path, json_path)
    """
    data_dir = Path(storage.data_dir)
    return (
        write_csv(records, data_dir / storage.csv_output),
        write_json(records, data_dir / storage.json_output),
    )
