# providers/geo.py
# nominatim text search (read-only, no key)

import logging
from typing import List

import httpx

from models import Candidate
from utils import UpstreamError

log = logging.getLogger("wanderlust.geo")

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
HEADERS = {
    "User-Agent": "WanderLust/1.0 (trip planner)",
    "Accept-Language": "en",
    "Accept": "application/json",
}


async def autocomplete(q: str, limit: int = 5, client: httpx.AsyncClient | None = None) -> List[Candidate]:
    """Free-text search. address carries Nominatim's display_name."""
    params = {"q": q, "format": "json", "limit": limit}
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=20.0, headers=HEADERS) as c:
                r = await c.get(NOMINATIM_URL, params=params)
        else:
            r = await client.get(NOMINATIM_URL, params=params, headers=HEADERS)
    except httpx.HTTPError as e:
        raise UpstreamError("nominatim", f"request failed: {e}") from e
    if r.status_code != 200:
        log.warning("nominatim status %s for %r", r.status_code, q)
        raise UpstreamError("nominatim", f"status {r.status_code}", r.status_code)

    try:
        data = r.json()
    except ValueError as e:
        raise UpstreamError("nominatim", "response was not valid JSON") from e

    out: List[Candidate] = []
    for place in data or []:
        out.append(Candidate(
            id=place.get("place_id"),
            name=(place.get("name") or place.get("display_name") or "").split(",")[0].strip(),
            lat=place.get("lat"),
            lon=place.get("lon"),
            address=place.get("display_name"),
            type=place.get("type"),
        ))
    return out


async def geocode(q: str, client: httpx.AsyncClient | None = None) -> tuple[float, float] | None:
    hits = await autocomplete(q, limit=1, client=client)
    if not hits:
        return None
    return (float(hits[0].lat), float(hits[0].lon))
