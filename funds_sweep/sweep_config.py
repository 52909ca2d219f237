"""
Sweep Config

Loads the sweep service configuration from sweep_config.yaml and the
process environment. Environment variables always win over the file.
"""

import os
from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml
from loguru import logger

from .network_client import load_signer


DEFAULT_RPC_ENDPOINTS = (
    'https://eth.llamarpc.com',
    'https://rpc.ankr.com/eth',
    'https://ethereum-rpc.publicnode.com',
    'https://cloudflare-eth.com',
)


@dataclass
class SweepConfig:
    """Runtime settings for the sweep service"""
    private_key: Optional[str] = None
    port: int = 3000
    rpc_endpoints: Tuple[str, ...] = DEFAULT_RPC_ENDPOINTS
    default_destination: Optional[str] = None
    default_amount_eth: Decimal = Decimal('0.01')
    fee_reserve_eth: Decimal = Decimal('0.002')
    probe_timeout_seconds: float = 5.0
    submit_timeout_seconds: float = 60.0
    confirmation_timeout_seconds: float = 180.0
    log_level: str = 'INFO'
    extra: Dict = field(default_factory=dict)

    def redacted(self) -> Dict:
        """Loggable view of the config (private key masked)"""
        data = asdict(self)
        data['private_key'] = '***' if self.private_key else None
        data['default_amount_eth'] = str(self.default_amount_eth)
        data['fee_reserve_eth'] = str(self.fee_reserve_eth)
        data['rpc_endpoints'] = list(self.rpc_endpoints)
        data.pop('extra', None)
        return data


# env var -> SweepConfig field
ENV_OVERRIDES = {
    'PRIVATE_KEY': 'private_key',
    'PORT': 'port',
    'RPC_ENDPOINTS': 'rpc_endpoints',
    'TREASURY_ADDRESS': 'default_destination',
    'DEFAULT_DESTINATION': 'default_destination',
    'DEFAULT_AMOUNT_ETH': 'default_amount_eth',
    'FEE_RESERVE_ETH': 'fee_reserve_eth',
    'PROBE_TIMEOUT_SECONDS': 'probe_timeout_seconds',
    'SUBMIT_TIMEOUT_SECONDS': 'submit_timeout_seconds',
    'CONFIRMATION_TIMEOUT_SECONDS': 'confirmation_timeout_seconds',
    'LOG_LEVEL': 'log_level',
}


def _parse_endpoints(value) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(',')
    else:
        items = list(value or [])
    endpoints = tuple(str(item).strip() for item in items if str(item).strip())
    if not endpoints:
        raise ValueError("rpc_endpoints must contain at least one endpoint")
    return endpoints


def _parse_decimal(name: str, value) -> Decimal:
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"{name} must be a decimal number, got {value!r}")
    if not parsed.is_finite() or parsed < 0:
        raise ValueError(f"{name} must be a non-negative number, got {value!r}")
    return parsed


def _parse_seconds(name: str, value) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number of seconds, got {value!r}")
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return parsed


def _coerce(name: str, value):
    """Convert a raw file/env value into the type of SweepConfig.<name>"""
    if name == 'rpc_endpoints':
        return _parse_endpoints(value)
    if name == 'port':
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"port must be an integer, got {value!r}")
    if name in ('default_amount_eth', 'fee_reserve_eth'):
        return _parse_decimal(name, value)
    if name.endswith('_seconds'):
        return _parse_seconds(name, value)
    if name == 'log_level':
        return str(value).upper()
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _load_file(config_path: Path) -> Dict:
    """Read the YAML config file, empty dict if missing or unreadable"""
    if not config_path.exists():
        logger.debug(f"Config file {config_path} not found, using defaults")
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}, using defaults")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Config file {config_path} is not a mapping, using defaults")
        return {}

    return data


def load_config(
    config_path: str = "sweep_config.yaml",
    environ: Optional[Dict[str, str]] = None
) -> SweepConfig:
    """
    Build the service config

    Priority:
    1. Environment variables
    2. sweep_config.yaml
    3. Built-in defaults

    Args:
        config_path: Path to YAML config file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        SweepConfig

    Raises:
        ValueError: if a setting has an invalid value, including a
            malformed PRIVATE_KEY
    """
    environ = os.environ if environ is None else environ
    known = set(SweepConfig.__dataclass_fields__) - {'extra'}

    values = {}
    extra = {}
    for key, value in _load_file(Path(config_path)).items():
        if key in known:
            values[key] = _coerce(key, value)
        else:
            extra[key] = value

    for env_name, field_name in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == '':
            continue
        values[field_name] = _coerce(field_name, raw)

    config = SweepConfig(extra=extra, **values)
    load_signer(config.private_key)

    logger.info(f"Sweep config loaded: {len(config.rpc_endpoints)} endpoints, "
                f"signer {'configured' if config.private_key else 'not configured'}")
    logger.debug(f"Effective config: {config.redacted()}")

    return config
