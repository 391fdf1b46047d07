import pytest

from intent_coordinator.config import Settings
from intent_coordinator.errors import ConfigurationError

FULL = {
    "POSTGRES_DSN": "postgresql+asyncpg://coord:secret@db:5432/coord",
    "LENS_RPC_URL": "http://lens:8545",
    "BASE_RPC_URL": "http://base:8545",
    "PRIVATE_KEY": "0x" + "4c" * 32,
    "LENS_INTENT_RESOLVER": "0x" + "01" * 20,
    "CROSS_CHAIN_RESOLVER": "0x" + "02" * 20,
    "TICKET_REGISTRY": "0x" + "03" * 20,
}


@pytest.fixture
def clean_env(monkeypatch):
    for k in FULL:
        monkeypatch.delenv(k, raising=False)
    return monkeypatch


def test_missing_worker_config_lists_every_name(clean_env):
    s = Settings(_env_file=None)
    assert s.missing_worker_config() == list(FULL)
    with pytest.raises(ConfigurationError) as ei:
        s.require_worker_config()
    assert "POSTGRES_DSN" in str(ei.value)
    assert "TICKET_REGISTRY" in str(ei.value)
    with pytest.raises(ConfigurationError):
        _ = s.dsn


def test_full_config_and_defaults(clean_env):
    for k, v in FULL.items():
        clean_env.setenv(k, v)
    s = Settings(_env_file=None)
    s.require_worker_config()
    assert s.dsn == FULL["POSTGRES_DSN"]
    assert s.bridge_pending_delay_sec == 60
    assert s.bridge_error_delay_sec == 300
    assert s.bridge_max_attempts == 0
    assert s.deadline_policy == "ignore"


def test_debug_dump_masks_secrets(clean_env):
    for k, v in FULL.items():
        clean_env.setenv(k, v)
    clean_env.setenv("ADMIN_TOKEN", "super-secret-token")
    dump = Settings(_env_file=None).debug_dump()
    flat = repr(dump)
    assert FULL["PRIVATE_KEY"] not in flat
    assert "secret@db" not in flat
    assert "super-secret-token" not in flat
    assert dump["lens"]["rpc_url"] == FULL["LENS_RPC_URL"]
