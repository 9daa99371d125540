# courierhub/services/tracking_url.py
from __future__ import annotations

from typing import Callable, Dict, Optional
from urllib.parse import quote

_TRACKING_URLS: Dict[str, Callable[[str], str]] = {
    "pathao": lambda ref: f"https://merchant.pathao.com/tracking?consignment_id={ref}",
    "steadfast": lambda ref: f"https://steadfast.com.bd/t/{ref}",
}


def get_tracking_url(provider_type: Optional[str], tracking_id: Optional[str]) -> Optional[str]:
    """Public tracking page, or None (manual / unknown courier / no id yet)."""
    if not tracking_id:
        return None
    build = _TRACKING_URLS.get((provider_type or "").strip().lower())
    if build is None:
        return None
    return build(quote(str(tracking_id), safe=""))
