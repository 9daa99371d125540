# courierhub/db/base.py
from __future__ import annotations

import importlib
import logging
from typing import Iterable, List, Set

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("courierhub.models")


class Base(DeclarativeBase):
    """Single ORM base for the whole package."""

    pass


_INITIALIZED: bool = False

_MODEL_MODULES = [
    "courierhub.models.order",
    "courierhub.models.delivery_provider",
    "courierhub.models.delivery_shipment",
    "courierhub.models.delivery_location",
]


def init_models(*, extra_modules: Iterable[str] | None = None, force: bool = False) -> None:
    """
    Import every model module so that Base.metadata is complete, then
    configure mappers once.
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        log.debug("init_models() called again; already initialized, skipping.")
        return

    seen: Set[str] = set()
    loaded: List[str] = []
    for mod in [*_MODEL_MODULES, *(extra_modules or [])]:
        if mod in seen:
            continue
        seen.add(mod)
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))
