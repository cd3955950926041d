"""Configuration helpers for the delegation engine."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "delegation.yaml"

OPTIMISM = 10
OPTIMISM_SEPOLIA = 11155420

DEFAULT_FEE_BUFFER_PCT = 120
DEFAULT_FEE_CACHE_TTL = 60.0
DEFAULT_FALLBACK_ENTROPY_FEE_WEI = 10**15  # 0.001 ETH
DEFAULT_FALLBACK_GAS = 200_000
DEFAULT_FALLBACK_GAS_PRICE_WEI = 10**9
DEFAULT_EVENT_POLL_INTERVAL = 2.0
DEFAULT_DAO_REGISTRY_URL = "https://membersuri.daostar.org"


def _is_address(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 42


@dataclass
class ChainDeployment:
    """Addresses of the assignment contract and randomness oracle on one chain."""

    chain_id: int
    contract_address: str
    entropy_address: str
    rpc_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ValueError("chain_id must be a positive integer")
        if not _is_address(self.contract_address):
            raise ValueError("contract_address must be a 0x-prefixed 20-byte address")
        if not _is_address(self.entropy_address):
            raise ValueError("entropy_address must be a 0x-prefixed 20-byte address")


DEFAULT_DEPLOYMENTS: Dict[int, ChainDeployment] = {
    OPTIMISM: ChainDeployment(
        chain_id=OPTIMISM,
        contract_address="0x1b99E303b9A1D8279F45Bb6e510863fB669cDf65",
        entropy_address="0x4374e5a8b9C22271E9EB878A2AA31DE97DF15DAF",
        rpc_url="https://mainnet.optimism.io",
    ),
    OPTIMISM_SEPOLIA: ChainDeployment(
        chain_id=OPTIMISM_SEPOLIA,
        contract_address="0xcaD1561c501eAAB2a44FD257b465b43D888b5b45",
        entropy_address="0x4374e5a8b9C22271E9EB878A2AA31DE97DF15DAF",
        rpc_url="https://sepolia.optimism.io",
    ),
}


def _default_deployments() -> Dict[int, ChainDeployment]:
    return {chain_id: replace(entry) for chain_id, entry in DEFAULT_DEPLOYMENTS.items()}


@dataclass
class EngineSettings:
    """Tunables shared by the fee, assignment and event components."""

    fee_buffer_pct: int = DEFAULT_FEE_BUFFER_PCT
    fee_cache_ttl: float = DEFAULT_FEE_CACHE_TTL
    fallback_entropy_fee_wei: int = DEFAULT_FALLBACK_ENTROPY_FEE_WEI
    fallback_gas: int = DEFAULT_FALLBACK_GAS
    fallback_gas_price_wei: int = DEFAULT_FALLBACK_GAS_PRICE_WEI
    event_poll_interval: float = DEFAULT_EVENT_POLL_INTERVAL
    audit_endpoint: Optional[str] = None
    audit_token: Optional[str] = None
    dao_registry_url: str = DEFAULT_DAO_REGISTRY_URL
    deployments: Dict[int, ChainDeployment] = field(
        default_factory=lambda: _default_deployments()
    )

    def __post_init__(self) -> None:
        if not isinstance(self.fee_buffer_pct, int) or not (100 <= self.fee_buffer_pct <= 200):
            raise ValueError("fee_buffer_pct must be an integer percentage between 100 and 200")
        if self.fee_cache_ttl <= 0:
            raise ValueError("fee_cache_ttl must be positive")
        if self.fallback_entropy_fee_wei < 0 or self.fallback_gas <= 0 or self.fallback_gas_price_wei <= 0:
            raise ValueError("fallback fee values must be positive")
        if self.event_poll_interval <= 0:
            raise ValueError("event_poll_interval must be positive")

    def deployment(self, chain_id: int) -> Optional[ChainDeployment]:
        return self.deployments.get(int(chain_id))

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "EngineSettings":
        def _resolve(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return default

        deployments = _default_deployments()
        for raw_id, entry in (_resolve("chains", "deployments", default={}) or {}).items():
            chain_id = int(raw_id)
            deployments[chain_id] = ChainDeployment(
                chain_id=chain_id,
                contract_address=str(_entry(entry, "contract_address", "contractAddress")),
                entropy_address=str(_entry(entry, "entropy_address", "entropyAddress")),
                rpc_url=_entry(entry, "rpc_url", "rpcUrl"),
            )
        return cls(
            fee_buffer_pct=int(_resolve("fee_buffer_pct", "feeBufferPct", default=DEFAULT_FEE_BUFFER_PCT)),
            fee_cache_ttl=float(_resolve("fee_cache_ttl", "feeCacheTtl", default=DEFAULT_FEE_CACHE_TTL)),
            fallback_entropy_fee_wei=int(
                _resolve("fallback_entropy_fee_wei", "fallbackEntropyFeeWei", default=DEFAULT_FALLBACK_ENTROPY_FEE_WEI)
            ),
            fallback_gas=int(_resolve("fallback_gas", "fallbackGas", default=DEFAULT_FALLBACK_GAS)),
            fallback_gas_price_wei=int(
                _resolve("fallback_gas_price_wei", "fallbackGasPriceWei", default=DEFAULT_FALLBACK_GAS_PRICE_WEI)
            ),
            event_poll_interval=float(
                _resolve("event_poll_interval", "eventPollInterval", default=DEFAULT_EVENT_POLL_INTERVAL)
            ),
            audit_endpoint=_resolve("audit_endpoint", "auditEndpoint"),
            audit_token=_resolve("audit_token", "auditToken"),
            dao_registry_url=str(_resolve("dao_registry_url", "daoRegistryUrl", default=DEFAULT_DAO_REGISTRY_URL)),
            deployments=deployments,
        )


def _entry(entry: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry:
            return entry[key]
    return None


def _load_mapping(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    if path.suffix.lower() == ".json":
        data = json.loads(text or "{}")
    else:
        data = yaml.safe_load(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("delegation configuration must be a mapping")
    return data


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw, 0)
    except ValueError:
        logger.warning("Invalid integer for %s: %s", name, raw)
        return None


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s: %s", name, raw)
        return None


def _apply_env(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(data)
    for key, env_name in (
        ("fee_buffer_pct", "DELEGATION_FEE_BUFFER_PCT"),
        ("fallback_entropy_fee_wei", "DELEGATION_FALLBACK_ENTROPY_FEE_WEI"),
        ("fallback_gas", "DELEGATION_FALLBACK_GAS"),
        ("fallback_gas_price_wei", "DELEGATION_FALLBACK_GAS_PRICE_WEI"),
    ):
        value = _env_int(env_name)
        if value is not None:
            merged[key] = value
    for key, env_name in (
        ("fee_cache_ttl", "DELEGATION_FEE_CACHE_TTL"),
        ("event_poll_interval", "DELEGATION_EVENT_POLL_INTERVAL"),
    ):
        value = _env_float(env_name)
        if value is not None:
            merged[key] = value
    for key, env_name in (
        ("audit_endpoint", "DELEGATION_AUDIT_ENDPOINT"),
        ("audit_token", "DELEGATION_AUDIT_TOKEN"),
        ("dao_registry_url", "DAO_REGISTRY_URL"),
    ):
        value = os.getenv(env_name)
        if value:
            merged[key] = value
    return merged


def load_settings(path: str | Path | None = None) -> EngineSettings:
    """Load engine settings from disk and apply environment overrides."""

    config_path = Path(path or os.getenv("DELEGATION_CONFIG") or _CONFIG_PATH)
    data = _apply_env(_load_mapping(config_path))
    try:
        settings = EngineSettings.from_mapping(data)
    except ValueError as exc:
        logger.warning("Invalid delegation configuration in %s: %s; using defaults", config_path, exc)
        settings = EngineSettings()
    for chain_id, deployment in settings.deployments.items():
        override = os.getenv(f"DELEGATION_RPC_URL_{chain_id}")
        if override:
            deployment.rpc_url = override
    return settings


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Return the process-wide settings, loaded once."""

    return load_settings()
