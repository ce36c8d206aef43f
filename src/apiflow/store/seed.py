import os
import pathlib
import re
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError

from apiflow.adapter_sdk import ConnectionConfig
from apiflow.common.logger import get_logger
from apiflow.common.security import hash_api_key, key_prefix
from apiflow.endpoints.models import Endpoint

from .models import Account, ApiKeyRecord
from .protocol import ConfigStore

logger = get_logger(__name__)

_ENV_REF = re.compile(r"\$\{env:([A-Za-z_][A-Za-z0-9_]*)\}")


class SeedApiKey(BaseModel):
    key: SecretStr
    owner_id: str
    name: Optional[str] = None
    revoked: bool = False


class SeedFileConfig(BaseModel):
    """File-level schema for a seed YAML document."""
    version: int = Field(1, description="Schema version")
    connections: List[ConnectionConfig] = Field(default_factory=list)
    endpoints: List[Endpoint] = Field(default_factory=list)
    api_keys: List[SeedApiKey] = Field(default_factory=list)
    accounts: List[Account] = Field(default_factory=list)


def _resolve_env(obj: Any) -> Any:
    """Replaces ``${env:NAME}`` references so secrets can stay out of the file."""
    if isinstance(obj, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), obj)
    if isinstance(obj, dict):
        return {k: _resolve_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_resolve_env(v) for v in obj]
    return obj


def load_seed(store: ConfigStore, path: pathlib.Path) -> Dict[str, int]:
    """Loads connections, endpoints, API keys and plans from YAML into ``store``.

    Returns:
        Dict[str, int]: Number of items written per section.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the file is not valid YAML or does not match the schema.
    """
    path = pathlib.Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Seed config not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse YAML from {path}: {e}")

    try:
        seed = SeedFileConfig.model_validate(_resolve_env(raw))
    except ValidationError as e:
        raise ValueError(f"Seed Configuration Invalid: {e}")

    for config in seed.connections:
        store.save_connection(config)
    for endpoint in seed.endpoints:
        store.save_endpoint(endpoint)
    for item in seed.api_keys:
        key = item.key.get_secret_value()
        store.save_api_key(
            ApiKeyRecord(
                key_hash=hash_api_key(key),
                owner_id=item.owner_id,
                name=item.name,
                prefix=key_prefix(key),
                revoked=item.revoked,
            )
        )
    for account in seed.accounts:
        store.set_plan(account.caller_id, account.plan)

    counts = {
        "connections": len(seed.connections),
        "endpoints": len(seed.endpoints),
        "api_keys": len(seed.api_keys),
        "accounts": len(seed.accounts),
    }
    logger.info(f"Loaded seed config from {path}: {counts}")
    return counts
