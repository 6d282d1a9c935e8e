"""Pytest configuration for issuecascade tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`).
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from issuecascade import logging as cascade_logging  # noqa: E402
from issuecascade.config import CascadeConfig, FieldAliases  # noqa: E402

from fakes import FakeTrackerClient  # noqa: E402

_TEST_START_TIMES: dict[str, float] = {}
_TEST_DURATIONS: list[tuple[str, float]] = []


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ISSUECASCADE_PROJECT_OWNER",
        "ISSUECASCADE_PROJECT_NUMBER",
        "ISSUECASCADE_LOG_LEVEL",
        "ISSUECASCADE_RETRY_ATTEMPTS",
        "ISSUECASCADE_RETRY_BASE",
        "ISSUECASCADE_RETRY_MAX_SLEEP",
        "ISSUECASCADE_GITHUB_TOKEN",
        "GITHUB_TOKEN",
        "GH_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cascade_logging, "_GLOBAL", None)


@pytest.fixture
def fake_client() -> FakeTrackerClient:
    return FakeTrackerClient()


@pytest.fixture
def cfg() -> CascadeConfig:
    return CascadeConfig(
        project_owner="acme",
        project_number=1,
        repositories=["acme/widgets"],
        fields={
            "status": FieldAliases(
                "Status",
                {
                    "backlog": "Backlog",
                    "ready": "Ready",
                    "in_progress": "In Progress",
                    "in_review": "In Review",
                    "done": "Done",
                },
            ),
            "priority": FieldAliases("Priority", {"p0": "P0", "p1": "P1", "p2": "P2"}),
        },
    )


@pytest.fixture
def idpf_cfg(cfg: CascadeConfig) -> CascadeConfig:
    cfg.framework = "IDPF-Agile"
    return cfg


# --- Timing utilities to help identify slow/stalling tests ---


def pytest_runtest_setup(item):  # type: ignore
    _TEST_START_TIMES[item.nodeid] = time.perf_counter()


def pytest_runtest_teardown(item):  # type: ignore
    start = _TEST_START_TIMES.pop(item.nodeid, None)
    if start is not None:
        _TEST_DURATIONS.append((item.nodeid, time.perf_counter() - start))


def pytest_sessionfinish(session, exitstatus):  # type: ignore
    if not _TEST_DURATIONS:
        return
    slow = sorted(_TEST_DURATIONS, key=lambda x: x[1], reverse=True)[:10]
    print("\n=== Slowest Tests (top 10) ===")
    for nodeid, secs in slow:
        print(f"{secs:0.3f}s  {nodeid}")
