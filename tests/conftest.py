# SPDX-License-Identifier: LGPL-3.0-or-later
import os
import sys
from pathlib import Path

import pytest

_THIS_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _THIS_DIR.parent

if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

os.environ.setdefault("PYTHONPATH", str(_REPO_ROOT))

FIXTURES_DIR = _THIS_DIR / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    """Directory holding the sample machine descriptors."""
    return FIXTURES_DIR


@pytest.fixture
def os_list():
    """The bundled operating system catalog."""
    from vmexchange.catalog import load_os_catalog

    return load_os_catalog()
