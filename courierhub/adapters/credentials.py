# courierhub/adapters/credentials.py
"""
Typed credential / config blobs per courier.

Provider records store these as JSON text; keys may be camelCase (as written
by the admin UI) or snake_case.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PATHAO_DEFAULT_BASE_URL = "https://api-hermes.pathao.com"
STEADFAST_DEFAULT_BASE_URL = "https://portal.packzy.com/api/v1"


class _ProviderSettings(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
        frozen=True,
    )


class PathaoCredentials(_ProviderSettings):
    base_url: str = Field(default=PATHAO_DEFAULT_BASE_URL, min_length=1)
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1, repr=False)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)


class PathaoConfig(_ProviderSettings):
    store_id: Optional[str] = None
    # 48 = normal delivery, 12 = on-demand
    default_delivery_type: int = 48
    # 1 = document, 2 = parcel
    default_item_type: int = 2
    default_item_weight: float = Field(default=0.5, gt=0)
    webhook_secret: Optional[str] = Field(default=None, repr=False)

    @field_validator("store_id", mode="before")
    @classmethod
    def _store_id_as_str(cls, v):
        if v is None or v == "":
            return None
        return str(v)


class SteadfastCredentials(_ProviderSettings):
    base_url: str = Field(default=STEADFAST_DEFAULT_BASE_URL, min_length=1)
    api_key: str = Field(min_length=1, repr=False)
    secret_key: str = Field(min_length=1, repr=False)


class SteadfastConfig(_ProviderSettings):
    # written by the admin UI; shipments take COD from the caller or the order totals
    default_cod_amount: Optional[Decimal] = Field(default=None, ge=0)
    webhook_secret: Optional[str] = Field(default=None, repr=False)
