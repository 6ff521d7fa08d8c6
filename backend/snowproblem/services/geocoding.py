from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from ..config import settings
from ..exceptions import TransientError
from ..logger import logger


@dataclass(frozen=True)
class GeocodeResult:
    address: str
    latitude: float
    longitude: float


async def _lookup(query: str) -> Optional[GeocodeResult]:
    url = f"{settings.MAPBOX_BASE_URL}/{query}.json"
    params = {"access_token": settings.MAPBOX_TOKEN, "limit": 1}
    try:
        async with httpx.AsyncClient(timeout=settings.GEOCODING_TIMEOUT_SECONDS) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPError as e:
        logger.error("Geocoding request failed", extra={"error": str(e)})
        raise TransientError("Address lookup is temporarily unavailable") from e

    features = data.get("features") or []
    if not features:
        return None
    feature = features[0]
    lng, lat = feature["center"]
    return GeocodeResult(address=feature["place_name"], latitude=float(lat), longitude=float(lng))


async def geocode_address(address: str) -> Optional[GeocodeResult]:
    """Resolve free-text address to coordinates; None when nothing matches."""
    if not address or len(address.strip()) < 5:
        return None
    return await _lookup(quote(address.strip(), safe=""))


async def reverse_geocode(latitude: float, longitude: float) -> Optional[GeocodeResult]:
    result = await _lookup(f"{longitude},{latitude}")
    if result is None:
        return None
    # keep the caller's exact position, only the label comes from the lookup
    return GeocodeResult(address=result.address, latitude=latitude, longitude=longitude)
