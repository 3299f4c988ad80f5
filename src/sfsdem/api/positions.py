from __future__ import annotations

from pathlib import Path

import numpy as np

from sfsdem.errors import DataError


def read_position_records(path: Path) -> dict[str, np.ndarray]:
    """
    Read sun or spacecraft positions, one `key x y z` record per line.

    Blank lines are skipped. An unreadable file, a line that does not parse
    or a repeated key aborts with `DataError`.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DataError(f"Could not read file: {path}") from e

    records: dict[str, np.ndarray] = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = line.split()
        try:
            if len(parts) < 4:
                raise ValueError(line)
            key = parts[0]
            val = np.array([float(p) for p in parts[1:4]], dtype=np.float64)
        except ValueError as e:
            raise DataError(f"Unable to read from file: {path} the line: '{line}'") from e
        if key in records:
            raise DataError(f"Duplicate key: {key} in file: {path}")
        records[key] = val
    return records


def lookup_position(records: dict[str, np.ndarray], image_path: Path) -> np.ndarray | None:
    """Record for an image, keyed by file name first, then by stem."""
    image_path = Path(image_path)
    for key in (image_path.name, image_path.stem):
        if key in records:
            return records[key].copy()
    return None
