from pathlib import Path

import pytest

from daggergm.storage import Storage


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def storage(data_dir: Path) -> Storage:
    """Fresh storage rooted in a per-test temp directory."""
    return Storage(data_dir)
