"""Shared fixtures: the real config directory and both store implementations."""

import json
from pathlib import Path
from typing import Any, Optional

import pytest

from vortex.persistence.base import GovernanceStore
from vortex.persistence.memory_store import MemoryStore
from vortex.persistence.sqlite_store import SqliteStore
from vortex.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def make_resolver(
    params: Optional[dict[str, Any]] = None,
    policy: Optional[dict[str, Any]] = None,
) -> PolicyResolver:
    """Resolver from the real config with top-level sections overridden."""
    base_params = json.loads((CONFIG_DIR / "governance_params.json").read_text())
    base_policy = json.loads((CONFIG_DIR / "runtime_policy.json").read_text())
    for key, value in (params or {}).items():
        if isinstance(value, dict) and isinstance(base_params.get(key), dict):
            base_params[key] = {**base_params[key], **value}
        else:
            base_params[key] = value
    for key, value in (policy or {}).items():
        if isinstance(value, dict) and isinstance(base_policy.get(key), dict):
            base_policy[key] = {**base_policy[key], **value}
        else:
            base_policy[key] = value
    return PolicyResolver(base_params, base_policy)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> GovernanceStore:
    if request.param == "memory":
        return MemoryStore()
    s = SqliteStore(tmp_path / "vortex.sqlite3")
    request.addfinalizer(s.close)
    return s
