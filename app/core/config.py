from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
ChainBackend = Literal["web3", "memory", "none"]
ContentBackend = Literal["http", "memory"]

# Chain ids for the registry networks we deploy to.
CHAIN_IDS = {"polygon": 137, "amoy": 80002}

DEFAULT_IPFS_TIMEOUT_SECONDS = 30.0
DEFAULT_IPFS_MAX_BYTES = 50 * 1024 * 1024


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getfloat(name: str, default: float) -> float:
    raw = _getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {raw!r})")
    return value


def _getint(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {raw!r})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    chain_network: str
    rpc_url: str | None
    registry_address: str | None
    signer_private_key: str | None
    chain_timeout_seconds: float
    chain_receipt_timeout_seconds: float
    ipfs_api_url: str | None
    ipfs_project_id: str | None
    ipfs_project_secret: str | None
    ipfs_gateway_url: str
    ipfs_timeout_seconds: float
    ipfs_max_bytes: int
    public_api_url: str
    issuer_name: str
    issuer_signing_seed: str | None
    batch_max_workers: int
    jwt_public_key: str | None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def chain_id(self) -> int:
        return CHAIN_IDS[self.chain_network]

    @property
    def chain_backend(self) -> ChainBackend:
        """Which Blockchain Gateway the app wires up.

        A fully configured registry always wins.  Without one, dev and test
        run against the in-memory registry; prod has no chain at all and
        the authoritative routes answer 503.
        """
        if self.rpc_url and self.registry_address:
            return "web3"
        if self.is_prod:
            return "none"
        return "memory"

    @property
    def content_backend(self) -> ContentBackend:
        return "http" if self.ipfs_api_url else "memory"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    log_json = _getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")

    default_network = "polygon" if app_env_raw == "prod" else "amoy"
    chain_network = _getenv("CHAIN_NETWORK", default_network).lower()
    if chain_network not in CHAIN_IDS:
        raise ValueError(
            f"CHAIN_NETWORK must be one of {'|'.join(CHAIN_IDS)} (got {chain_network!r})"
        )
    rpc_env = "POLYGON_RPC_URL" if chain_network == "polygon" else "AMOY_RPC_URL"

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json,
        port=port,
        redis_url=_getenv("REDIS_URL", "") or None,
        chain_network=chain_network,
        rpc_url=_getenv(rpc_env, "") or None,
        registry_address=_getenv("REGISTRY_ADDRESS", "") or None,
        signer_private_key=_getenv("SIGNER_PRIVATE_KEY", "") or None,
        chain_timeout_seconds=_getfloat("CHAIN_TIMEOUT_SECONDS", 20.0),
        chain_receipt_timeout_seconds=_getfloat("CHAIN_RECEIPT_TIMEOUT_SECONDS", 120.0),
        ipfs_api_url=_getenv("IPFS_API_URL", "") or None,
        ipfs_project_id=_getenv("IPFS_PROJECT_ID", "") or None,
        ipfs_project_secret=_getenv("IPFS_PROJECT_SECRET", "") or None,
        ipfs_gateway_url=_getenv("IPFS_GATEWAY_URL", "https://ipfs.io").rstrip("/"),
        ipfs_timeout_seconds=_getfloat(
            "IPFS_TIMEOUT_SECONDS", DEFAULT_IPFS_TIMEOUT_SECONDS
        ),
        ipfs_max_bytes=_getint("IPFS_MAX_BYTES", DEFAULT_IPFS_MAX_BYTES),
        public_api_url=_getenv("PUBLIC_API_URL", "http://localhost:8000").rstrip("/"),
        issuer_name=_getenv("ISSUER_NAME", "Sample University"),
        issuer_signing_seed=_getenv("ISSUER_SIGNING_SEED", "") or None,
        batch_max_workers=_getint("BATCH_MAX_WORKERS", 4),
        jwt_public_key=_getenv("JWT_PUBLIC_KEY", "") or None,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
