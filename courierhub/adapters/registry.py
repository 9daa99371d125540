# courierhub/adapters/registry.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Type

import httpx
from pydantic import BaseModel, ValidationError

from courierhub.adapters.base import CourierAdapter
from courierhub.adapters.credentials import (
    PathaoConfig,
    PathaoCredentials,
    SteadfastConfig,
    SteadfastCredentials,
)
from courierhub.adapters.pathao import PathaoAdapter
from courierhub.adapters.steadfast import SteadfastAdapter
from courierhub.core.config import AppSettings
from courierhub.services.delivery_errors import MalformedCredentials, UnknownProviderType

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderVariant:
    adapter_cls: Type[CourierAdapter]
    credentials_model: Type[BaseModel]
    config_model: Type[BaseModel]


# provider.type -> adapter + the shape of its stored blobs
_ADAPTERS: Dict[str, ProviderVariant] = {
    "pathao": ProviderVariant(PathaoAdapter, PathaoCredentials, PathaoConfig),
    "steadfast": ProviderVariant(SteadfastAdapter, SteadfastCredentials, SteadfastConfig),
}

SUPPORTED_PROVIDER_TYPES: Tuple[str, ...] = tuple(_ADAPTERS)


def get_variant(provider_type: Optional[str]) -> ProviderVariant:
    key = (provider_type or "").strip().lower()
    variant = _ADAPTERS.get(key)
    if variant is None:
        raise UnknownProviderType(provider_type)
    return variant


def _decode_blob(raw: Any, *, provider_type: str, field: str) -> Dict[str, Any]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedCredentials(provider_type, f"{field} is not valid JSON ({e.msg})") from e
    except TypeError as e:
        raise MalformedCredentials(provider_type, f"{field} must be a JSON string") from e
    if not isinstance(data, dict):
        raise MalformedCredentials(provider_type, f"{field} must be a JSON object")
    return data


def _validate(model: Type[BaseModel], data: Dict[str, Any], *, provider_type: str, field: str) -> BaseModel:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        # loc + msg only: input values may be secrets
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or field}: {err['msg']}" for err in e.errors()
        )
        raise MalformedCredentials(provider_type, f"{field}: {problems}") from e


def decode_provider_config(provider) -> BaseModel:
    """Typed ``config`` blob for a provider record (webhook secret, defaults...)."""
    variant = get_variant(provider.type)
    key = provider.type.strip().lower()
    return _validate(
        variant.config_model,
        _decode_blob(provider.config, provider_type=key, field="config"),
        provider_type=key,
        field="config",
    )


def create_provider(
    provider,
    *,
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[AppSettings] = None,
) -> CourierAdapter:
    """
    Provider record -> ready adapter.

    Raises UnknownProviderType / MalformedCredentials before any network call.
    """
    variant = get_variant(provider.type)
    key = provider.type.strip().lower()

    credentials = _validate(
        variant.credentials_model,
        _decode_blob(provider.credentials, provider_type=key, field="credentials"),
        provider_type=key,
        field="credentials",
    )
    config = decode_provider_config(provider)

    log.debug("building %s adapter for provider %s", key, getattr(provider, "id", None))
    return variant.adapter_cls(credentials, config, client=client, settings=settings)
