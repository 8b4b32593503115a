from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parent.parent


def test_opencv_build_has_gui_support():
    # The CLI preview calls cv2.imshow / cv2.waitKey
    with open(ROOT / "pyproject.toml", "rb") as f:
        dependencies = tomllib.load(f)["project"]["dependencies"]

    names = [dep.split(">")[0].split("=")[0].strip() for dep in dependencies]

    assert "opencv-python" in names
    assert "opencv-python-headless" not in names
