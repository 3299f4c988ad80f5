from pathlib import Path

import numpy as np
import pytest

from sfsdem.api.positions import lookup_position, read_position_records
from sfsdem.errors import DataError


def test_read_position_records(tmp_path: Path):
    p = tmp_path / "sun.txt"
    p.write_text("img_a 1 2 3\n\nimg_b.cub -1.5e11 2e10 0\n", encoding="utf-8")
    records = read_position_records(p)
    assert sorted(records) == ["img_a", "img_b.cub"]
    np.testing.assert_array_equal(records["img_a"], [1.0, 2.0, 3.0])

    assert lookup_position(records, Path("/data/img_a.tif")) is not None
    np.testing.assert_array_equal(lookup_position(records, Path("img_b.cub")), [-1.5e11, 2e10, 0.0])
    assert lookup_position(records, Path("img_c.tif")) is None


@pytest.mark.parametrize(
    "text",
    [
        "img_a 1 2\n",
        "img_a 1 two 3\n",
    ],
)
def test_malformed_line_is_rejected(tmp_path: Path, text: str):
    p = tmp_path / "bad.txt"
    p.write_text(text, encoding="utf-8")
    with pytest.raises(DataError, match="Unable to read"):
        read_position_records(p)


def test_duplicate_key_is_rejected(tmp_path: Path):
    p = tmp_path / "dup.txt"
    p.write_text("img 1 2 3\nimg 4 5 6\n", encoding="utf-8")
    with pytest.raises(DataError, match="Duplicate key"):
        read_position_records(p)


def test_missing_file(tmp_path: Path):
    with pytest.raises(DataError):
        read_position_records(tmp_path / "nope.txt")
