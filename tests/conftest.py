import os
import sys

import pytest


def pytest_configure():
    # Make `src/` importable so tests run without an installed package
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture(autouse=True)
def _isolate_store_env(monkeypatch):
    # Store options fall back to these; keep the developer's shell out of tests
    for name in ("ALCHEMY_STATE_FERNET_KEY", "ALCHEMY_STATE_BUCKET"):
        monkeypatch.delenv(name, raising=False)
