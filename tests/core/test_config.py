from __future__ import annotations

import pytest

from app.core.config import AppEnv, Settings, load_settings

# ---- valid values ----


def test_load_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("APP_ENV", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"


def test_load_settings_respects_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("LOG_LEVEL", "error")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "error"


def test_load_settings_normalizes_case(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "PROD")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "debug"


def test_load_settings_strips_whitespace(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "  test  ")
    monkeypatch.setenv("LOG_LEVEL", "  warning  ")
    settings = load_settings()
    assert settings.app_env == "test"
    assert settings.log_level == "warning"


# ---- invalid APP_ENV ----


def test_load_settings_rejects_invalid_app_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.setenv("LOG_LEVEL", "info")
    with pytest.raises(ValueError, match="APP_ENV must be dev|test|prod"):
        load_settings()


def test_load_settings_rejects_empty_app_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "")
    with pytest.raises(ValueError, match="APP_ENV must be dev|test|prod"):
        load_settings()


# ---- invalid LOG_LEVEL ----


def test_load_settings_rejects_invalid_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with pytest.raises(ValueError, match="LOG_LEVEL must be debug|info|warning|error"):
        load_settings()


def test_load_settings_rejects_empty_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LOG_LEVEL", "")
    with pytest.raises(ValueError, match="LOG_LEVEL must be debug|info|warning|error"):
        load_settings()


# ---- Settings properties ----


def _make_settings(app_env: AppEnv = "dev", **overrides: object) -> Settings:
    fields: dict[str, object] = {
        "app_env": app_env,
        "log_level": "info",
        "log_json": False,
        "port": 8000,
        "redis_url": None,
        "chain_network": "amoy",
        "rpc_url": None,
        "registry_address": None,
        "signer_private_key": None,
        "chain_timeout_seconds": 20.0,
        "chain_receipt_timeout_seconds": 120.0,
        "ipfs_api_url": None,
        "ipfs_project_id": None,
        "ipfs_project_secret": None,
        "ipfs_gateway_url": "https://ipfs.io",
        "ipfs_timeout_seconds": 30.0,
        "ipfs_max_bytes": 50 * 1024 * 1024,
        "public_api_url": "http://localhost:8000",
        "issuer_name": "Sample University",
        "issuer_signing_seed": None,
        "batch_max_workers": 4,
        "jwt_public_key": None,
    }
    fields.update(overrides)
    return Settings(**fields)  # type: ignore[arg-type]


def test_settings_is_dev() -> None:
    s = _make_settings("dev")
    assert s.is_dev is True
    assert s.is_test is False
    assert s.is_prod is False


def test_settings_is_test() -> None:
    s = _make_settings("test")
    assert s.is_dev is False
    assert s.is_test is True
    assert s.is_prod is False


def test_settings_is_prod() -> None:
    s = _make_settings("prod")
    assert s.is_dev is False
    assert s.is_test is False
    assert s.is_prod is True


def test_settings_is_frozen() -> None:
    s = _make_settings()
    with pytest.raises(AttributeError):
        s.app_env = "prod"  # type: ignore[misc]


# ---- registry and content store selection ----


def test_chain_backend_memory_without_rpc() -> None:
    assert _make_settings("dev").chain_backend == "memory"
    assert _make_settings("test").chain_backend == "memory"


def test_chain_backend_none_in_prod_without_rpc() -> None:
    assert _make_settings("prod").chain_backend == "none"


def test_chain_backend_web3_when_fully_configured() -> None:
    s = _make_settings(
        "prod", rpc_url="https://rpc.example.test", registry_address="0x" + "11" * 20
    )
    assert s.chain_backend == "web3"
    # An RPC URL alone is not enough.
    assert _make_settings("dev", rpc_url="https://rpc.example.test").chain_backend == "memory"


def test_chain_id_follows_network() -> None:
    assert _make_settings(chain_network="amoy").chain_id == 80002
    assert _make_settings(chain_network="polygon").chain_id == 137


def test_content_backend() -> None:
    assert _make_settings().content_backend == "memory"
    assert _make_settings(ipfs_api_url="http://127.0.0.1:5001").content_backend == "http"


# ---- chain and IPFS env vars ----


def test_network_defaults_by_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHAIN_NETWORK", raising=False)
    monkeypatch.setenv("APP_ENV", "prod")
    assert load_settings().chain_network == "polygon"
    monkeypatch.setenv("APP_ENV", "dev")
    assert load_settings().chain_network == "amoy"


def test_rpc_url_is_read_for_selected_network(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("CHAIN_NETWORK", "polygon")
    monkeypatch.setenv("POLYGON_RPC_URL", "https://polygon.example.test")
    monkeypatch.setenv("AMOY_RPC_URL", "https://amoy.example.test")
    assert load_settings().rpc_url == "https://polygon.example.test"


def test_rejects_unknown_network(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHAIN_NETWORK", "mumbai")
    with pytest.raises(ValueError, match="CHAIN_NETWORK"):
        load_settings()


@pytest.mark.parametrize(
    "name, value",
    [
        ("IPFS_TIMEOUT_SECONDS", "soon"),
        ("IPFS_TIMEOUT_SECONDS", "0"),
        ("IPFS_MAX_BYTES", "-1"),
        ("BATCH_MAX_WORKERS", "four"),
        ("CHAIN_RECEIPT_TIMEOUT_SECONDS", "-5"),
    ],
)
def test_rejects_bad_numeric_settings(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        load_settings()


def test_urls_lose_trailing_slash(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PUBLIC_API_URL", "https://api.example.test/")
    monkeypatch.setenv("IPFS_GATEWAY_URL", "https://gw.example.test/")
    s = load_settings()
    assert s.public_api_url == "https://api.example.test"
    assert s.ipfs_gateway_url == "https://gw.example.test"


def test_chain_timeouts_are_separate(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHAIN_TIMEOUT_SECONDS", "15")
    monkeypatch.setenv("CHAIN_RECEIPT_TIMEOUT_SECONDS", "300")
    s = load_settings()
    assert s.chain_timeout_seconds == 15.0
    assert s.chain_receipt_timeout_seconds == 300.0
