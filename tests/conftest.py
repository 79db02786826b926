"""
Pytest configuration and fixtures.
"""

import os
from pathlib import Path

import pytest

FIXTURES = Path(__file__).parent / "fixtures"


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests (large generated plans)",
    )


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers",
        "slow: marks long-running tests (deselect with '-m \"not slow\"')",
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless explicitly requested."""
    if not config.getoption("--run-slow") and not os.environ.get("RUN_SLOW_TESTS"):
        skip_slow = pytest.mark.skip(reason="Requires --run-slow or RUN_SLOW_TESTS=1")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


def load_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


@pytest.fixture
def fixture_text():
    """Read a sample plan from tests/fixtures by file name."""
    return load_fixture


@pytest.fixture
def seq_scan_plan():
    return (
        "Seq Scan on users  (cost=0.00..35.50 rows=1000 width=40) "
        "(actual time=0.010..2.345 rows=1000 loops=1)\n"
        "Execution Time: 2.500 ms\n"
    )


@pytest.fixture
def hash_join_json():
    return load_fixture("hash_join.json")


@pytest.fixture
def hash_join_text():
    return load_fixture("hash_join_analyze.txt")


@pytest.fixture
def nested_loop_json():
    return load_fixture("nested_loop_analyze.json")


@pytest.fixture
def client():
    """FastAPI test client with the dummy LLM provider."""
    from fastapi.testclient import TestClient

    from pg_index_advisor.main import app

    original = os.environ.get("LLM_PROVIDER")
    os.environ["LLM_PROVIDER"] = "dummy"
    yield TestClient(app)
    if original is None:
        os.environ.pop("LLM_PROVIDER", None)
    else:
        os.environ["LLM_PROVIDER"] = original
