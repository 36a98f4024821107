"""
Test configuration for the portal tests.

sys.path is configured so 'from portal...' resolves whether pytest is run from
the project root or from portal/, with or without an editable install.
"""
import sys
from pathlib import Path

import pytest

_project_root = Path(__file__).parent.parent.parent   # .../<repo>/

if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from portal.tests.fakes import FakeProfileApi, make_fake_api  # noqa: E402


@pytest.fixture
def maria_api() -> FakeProfileApi:
    return make_fake_api("maria")


@pytest.fixture
def nuevo_api() -> FakeProfileApi:
    return make_fake_api("nuevo")
