from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# apps.local.main builds a module-level app on import; keep it out of the real data dir.
os.environ.setdefault("PLANWIZARD_DATA_DIR", tempfile.mkdtemp(prefix="planwizard-tests-"))

from planwizard.config import WizardConfig  # noqa: E402
from planwizard.finalize import SqlitePlanFinalizer  # noqa: E402
from planwizard.storage.messages import SqliteMessageLog  # noqa: E402
from planwizard.storage.sessions import SqliteSessionStore  # noqa: E402
from planwizard.wizard.orchestrator import WizardOrchestrator  # noqa: E402


def make_config(**overrides) -> WizardConfig:
    values = {
        "deterministic_enabled": True,
        "agent_enabled": False,
        "agent_provider": "stub",
        "agent_timeout_seconds": 2.0,
        "plan_url_prefix": "/plans",
        "storage_backend": "sqlite",
        "agent_workers": 2,
    }
    values.update(overrides)
    return WizardConfig(**values)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    monkeypatch.setenv("PLANWIZARD_DATA_DIR", str(tmp_path))
    return tmp_path / "wizard.sqlite3"


@pytest.fixture
def orchestrator_factory(db_path):
    created = []

    def _factory(agent=None, finalizer=None, now=None, **config_overrides):
        orchestrator = WizardOrchestrator(
            sessions=SqliteSessionStore(db_path),
            messages=SqliteMessageLog(db_path),
            finalizer=finalizer or SqlitePlanFinalizer(db_path),
            agent=agent,
            config=make_config(**config_overrides),
            now=now,
        )
        created.append(orchestrator)
        return orchestrator

    yield _factory
    for orchestrator in created:
        orchestrator.close()
