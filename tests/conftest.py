import sys

import pytest

from tests.repo_root import REPO_ROOT

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tests.image_fixtures import build_png  # noqa: E402


@pytest.fixture
def write_png(tmp_path):
    def _write(name: str, **chunks):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_png(**chunks))
        return path

    return _write
