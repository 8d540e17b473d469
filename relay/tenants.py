"""
Tenant registry.

Maps the `?client=` value of the telephony connection URL to the tenant's
Gemini credential, prompt, voice and greeting. Built once at startup and
never mutated afterwards.

Sources, in priority order:
1) TENANTS_FILE (JSON object keyed by tenant)
2) Built-in TENANT_CONFIGS with API keys taken from the environment
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)


class TenantNotFound(LookupError):
    """Unknown tenant, or a tenant without an API key."""

    def __init__(self, tenant: str, reason: str):
        super().__init__(f"{reason}: {tenant!r}")
        self.tenant = tenant
        self.reason = reason


@dataclass(frozen=True)
class TenantProfile:
    key: str
    name: str
    api_key: str
    system_prompt: str
    voice: str
    # Spoken-first prompt sent once Gemini acknowledges setup; None waits for the caller
    greeting: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"TenantProfile(key={self.key!r}, name={self.name!r}, voice={self.voice!r}, "
            f"has_api_key={bool(self.api_key)}, greeting={self.greeting is not None})"
        )


# Add tenants here, or point TENANTS_FILE at a JSON file with the same shape
TENANT_CONFIGS: Dict[str, Dict[str, Any]] = {
    "goldstar": {
        "name": "Goldstar Plumbing",
        "api_key_env": "GOLDSTAR_API_KEY",
        "system_prompt": "You are a helpful assistant for Goldstar Plumbing...",
        "voice": "Puck",
        "greeting": "Greet the caller on behalf of Goldstar Plumbing and ask how you can help.",
    },
    "another-client": {
        "name": "Another Client",
        "api_key_env": "ANOTHER_CLIENT_KEY",
        "system_prompt": "You are a receptionist...",
        "voice": "Aoede",
    },
}


class TenantRegistry(Mapping[str, TenantProfile]):
    def __init__(self, profiles: Mapping[str, TenantProfile]):
        self._profiles = MappingProxyType(dict(profiles))

    def __getitem__(self, key: str) -> TenantProfile:
        return self._profiles[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def resolve(self, tenant: str) -> TenantProfile:
        profile = self._profiles.get(tenant)
        if profile is None:
            raise TenantNotFound(tenant, "Unknown tenant")
        if not profile.api_key:
            raise TenantNotFound(tenant, "Tenant has no API key configured")
        return profile


def _read_prompt_from_file(path: Path) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()


def _profile_from_entry(
    key: str, entry: Mapping[str, Any], base_dir: Optional[Path] = None
) -> TenantProfile:
    if not isinstance(entry, Mapping):
        raise ValueError(f"Tenant {key!r} must be an object, got {type(entry).__name__}")

    api_key = entry.get("api_key")
    if api_key is None and entry.get("api_key_env"):
        api_key = os.getenv(entry["api_key_env"], "")

    prompt = entry.get("system_prompt")
    if prompt is None and entry.get("prompt_file"):
        prompt_path = Path(entry["prompt_file"])
        if not prompt_path.is_absolute() and base_dir is not None:
            prompt_path = base_dir / prompt_path
        prompt = _read_prompt_from_file(prompt_path)
    if not prompt:
        raise ValueError(f"Tenant {key!r} needs 'system_prompt' or 'prompt_file'")

    voice = entry.get("voice")
    if not voice:
        raise ValueError(f"Tenant {key!r} needs a 'voice'")

    greeting = entry.get("greeting") or None

    return TenantProfile(
        key=key,
        name=entry.get("name") or key,
        api_key=api_key or "",
        system_prompt=prompt,
        voice=voice,
        greeting=greeting.strip() if greeting else None,
    )


def build_registry(
    configs: Mapping[str, Mapping[str, Any]], base_dir: Optional[Path] = None
) -> TenantRegistry:
    profiles = {
        key: _profile_from_entry(key, entry, base_dir) for key, entry in configs.items()
    }
    return TenantRegistry(profiles)


def load_tenants_file(path: str | Path) -> TenantRegistry:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Tenants file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid tenants file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Tenants file must contain a JSON object keyed by tenant")

    return build_registry(data, base_dir=path.parent)


def load_registry(tenants_file: str = "") -> TenantRegistry:
    if tenants_file:
        registry = load_tenants_file(tenants_file)
        source = tenants_file
    else:
        registry = build_registry(TENANT_CONFIGS)
        source = "built-in"

    missing = [key for key, profile in registry.items() if not profile.api_key]
    logger.info(
        "Tenant registry loaded",
        source=source,
        tenants=sorted(registry),
        without_api_key=missing or None,
    )
    return registry
