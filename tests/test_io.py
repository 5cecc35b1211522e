from pathlib import Path

import numpy as np
import pytest

from utils.io import read_intrinsics, read_point_cloud_csv, save_point_cloud_csv


def test_saved_cloud_keeps_full_precision(tmp_path: Path) -> None:
    # given
    pts = np.array(
        [[0.1, -2.5, 1234.5678], [1e-7, 3.3333333, 0.0]], dtype=np.float32
    )
    path = tmp_path / "cloud.csv"

    # when
    save_point_cloud_csv(pts, path)
    restored = read_point_cloud_csv(path)

    # then
    assert restored.dtype == np.float32
    assert np.array_equal(restored, pts)


def test_saved_cloud_uses_comma_space_without_alignment(tmp_path: Path) -> None:
    # given
    path = tmp_path / "cloud.csv"

    # when
    save_point_cloud_csv(np.array([[1.0, 22.5, -3.0]]), path)

    # then
    assert path.read_text() == "1, 22.5, -3\n"


def test_read_point_cloud_csv_custom_delimiter(tmp_path: Path) -> None:
    # given
    path = tmp_path / "cloud.txt"
    path.write_text("1;2;3\n4;5;6\n")

    # when
    pts = read_point_cloud_csv(path, delimiter=";")

    # then
    assert pts.shape == (2, 3)
    assert pts[1].tolist() == [4.0, 5.0, 6.0]


def test_read_point_cloud_csv_rejects_wrong_columns(tmp_path: Path) -> None:
    # given
    path = tmp_path / "cloud.csv"
    path.write_text("1,2\n3,4\n")

    # then
    with pytest.raises(ValueError):
        _ = read_point_cloud_csv(path)


def test_read_intrinsics(tmp_path: Path) -> None:
    # given
    path = tmp_path / "intrinsics.txt"
    path.write_text("535.4 0 320.1\n0 539.2 247.6\n0 0 1\n")

    # when
    K = read_intrinsics(path)

    # then
    assert K.shape == (3, 3)
    assert K[0, 0] == pytest.approx(535.4)
    assert K[1, 2] == pytest.approx(247.6)
    assert K[2].tolist() == [0.0, 0.0, 1.0]


def test_read_intrinsics_rejects_wrong_shape(tmp_path: Path) -> None:
    # given
    path = tmp_path / "intrinsics.txt"
    path.write_text("1 0 0 0\n0 1 0 0\n")

    # then
    with pytest.raises(ValueError):
        _ = read_intrinsics(path)
