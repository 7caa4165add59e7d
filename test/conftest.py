from collections.abc import Iterator

import pytest

from safe_depends.db import DBStore
from safe_depends.registry import InMemoryRegistry


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--runintegration",
        action="store_true",
        default=False,
        help="run integration tests against the live npm registry and OSV",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: mark test as an integration test")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--runintegration"):
        # --runintegration given in cli: do not skip integration tests
        return
    skip_integration = pytest.mark.skip(reason="need --runintegration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture
def store() -> Iterator[DBStore]:
    with DBStore() as db:
        yield db


@pytest.fixture
def registry() -> InMemoryRegistry:
    return InMemoryRegistry()
