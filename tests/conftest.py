import pytest

import chainflow.persistence as persistence
from chainflow.config import ChainflowConfig, EngineConfig, PollerConfig


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path, monkeypatch):
    """Keep tests independent of local config files and shared state."""
    monkeypatch.setenv("CHAINFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    for name in (
        "CHAINFLOW_STACKS_API_URL",
        "CHAINFLOW_STATUS_BACKEND",
        "CHAINFLOW_INVOKER",
    ):
        monkeypatch.delenv(name, raising=False)
    persistence._registry_instance = None
    yield
    persistence._registry_instance = None


@pytest.fixture
def fast_config() -> ChainflowConfig:
    """Configuration with no settle delay and instant polling."""
    return ChainflowConfig(
        engine=EngineConfig(settle_delay=0),
        poller=PollerConfig(interval=0, max_attempts=5, mint_grace_period=0),
    )
