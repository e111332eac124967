# SPDX-License-Identifier: GPL-2.0-or-later
import os
import sys
from pathlib import Path

import pytest

_THIS_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _THIS_DIR.parent

for _p in (_REPO_ROOT, _THIS_DIR):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))

os.environ.setdefault("PYTHONPATH", str(_REPO_ROOT))

from fakes.fake_guestfs import FakeGuestFS  # noqa: E402
from fakes.fake_logger import FakeLogger  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests against in-memory fakes")


@pytest.fixture
def fake_g():
    return FakeGuestFS()


@pytest.fixture
def logger():
    return FakeLogger()
