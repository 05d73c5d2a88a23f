import os
import sys

import pytest


def pytest_configure(config):
    # Register custom marks used by some tests to silence warnings
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


# Ensure project root is on sys.path so tests run without an editable install,
# and the tests dir itself so provider tests can share the stream fakes.
ROOT = os.path.dirname(os.path.abspath(__file__))
PROJ = os.path.abspath(os.path.join(ROOT, os.pardir))
for path in (PROJ, ROOT):
    if path not in sys.path:
        sys.path.insert(0, path)


@pytest.fixture(autouse=True)
def _no_provider_keys(monkeypatch):
    """Keep real credentials out of the tests."""
    for name in (
        "OPENAI_API_KEY",
        "AZURE_OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "OPENROUTER_API_KEY",
        "ANTHROPIC_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
