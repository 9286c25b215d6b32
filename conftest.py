import os
import sys

import pytest

# Ensure repo-local imports (e.g., `import orchestrator`) resolve without extra setup.
src_dir = os.path.abspath(os.path.dirname(__file__))
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "-E",
        "--engine-smoke",
        action="store_true",
        default=False,
        dest="run_engine_smoke",
        help="Run tests marked with @pytest.mark.engine_smoke (spawns engine subprocesses)",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers", "engine_smoke: spawns a real engine subprocess through engine_comm"
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if not config.getoption("run_engine_smoke"):
        skip_smoke = pytest.mark.skip(reason="use -E/--engine-smoke to enable engine subprocess tests")
        for item in items:
            if "engine_smoke" in item.keywords:
                item.add_marker(skip_smoke)
