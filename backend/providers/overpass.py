# providers/overpass.py
# Overpass (OSM) tag-filtered nearby search

import logging
from typing import List

import httpx

from models import Candidate
from utils import UpstreamError

log = logging.getLogger("wanderlust.overpass")

OVERPASS_URL = "https://overpass-api.de/api/interpreter"
HEADERS = {
    "User-Agent": "WanderLust/1.0 (trip planner)",
    "Accept": "application/json",
}

# common category names -> OSM tourism tag
TYPE_MAPPING = {
    "tourist_attraction": "attraction",
    "tourist_attractions": "attraction",
    "attraction": "attraction",
    "museum": "museum",
    "hotel": "hotel",
    "restaurant": "restaurant",
    "viewpoint": "viewpoint",
    "monument": "monument",
    "gallery": "gallery",
    "information": "information",
}

# attractions are spread over several OSM keys
ATTRACTION_FILTERS = [
    ("node", '["tourism"="attraction"]'),
    ("way", '["tourism"="attraction"]'),
    ("relation", '["tourism"="attraction"]'),
    ("node", '["historic"]'),
    ("way", '["historic"]'),
    ("node", '["leisure"="park"]'),
    ("way", '["leisure"="park"]'),
    ("node", '["amenity"="place_of_worship"]'),
    ("way", '["amenity"="place_of_worship"]'),
]


def build_query(lat: float, lon: float, radius: int, osm_type: str) -> str:
    if osm_type == "attraction":
        filters = ATTRACTION_FILTERS
    else:
        filters = [(kind, f'["tourism"="{osm_type}"]') for kind in ("node", "way", "relation")]
    around = f"(around:{radius},{lat},{lon})"
    body = "\n".join(f"  {kind}{tag}{around};" for kind, tag in filters)
    return f"[out:json][timeout:30][maxsize:1073741824];\n(\n{body}\n);\nout center meta 50;"


def parse_elements(data: dict, osm_type: str, category: str, limit: int) -> List[Candidate]:
    """Drop unnamed / coordinate-less elements. Ways and relations use their center."""
    out: List[Candidate] = []
    for el in (data or {}).get("elements") or []:
        tags = el.get("tags") or {}
        center = el.get("center") or {}
        lat = el.get("lat") if el.get("lat") is not None else center.get("lat")
        lon = el.get("lon") if el.get("lon") is not None else center.get("lon")
        if not tags.get("name") or lat is None or lon is None:
            continue
        out.append(Candidate(
            id=str(el.get("id")),
            name=tags["name"],
            lat=lat,
            lon=lon,
            type=tags.get("tourism") or tags.get("historic") or tags.get("leisure") or tags.get("amenity") or osm_type,
            category=category,
        ))
        if len(out) >= limit:
            break
    return out


async def nearby(
    lat: float,
    lon: float,
    radius: int = 2000,
    category: str = "tourist_attraction",
    limit: int = 20,
    client: httpx.AsyncClient | None = None,
) -> List[Candidate]:
    osm_type = TYPE_MAPPING.get(category, "attraction")
    query = build_query(lat, lon, radius, osm_type)
    log.debug("overpass query: %s", query)
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=35.0, headers=HEADERS) as c:
                r = await c.post(OVERPASS_URL, data={"data": query})
        else:
            r = await client.post(OVERPASS_URL, data={"data": query}, headers=HEADERS)
    except httpx.HTTPError as e:
        raise UpstreamError("overpass", f"request failed: {e}") from e
    if r.status_code != 200:
        log.warning("overpass status %s: %s", r.status_code, r.text[:400])
        raise UpstreamError("overpass", f"status {r.status_code}", r.status_code)
    try:
        data = r.json()
    except ValueError as e:
        # overpass answers 200 with an HTML page when it is overloaded
        raise UpstreamError("overpass", "response was not valid JSON") from e
    return parse_elements(data, osm_type, category, limit)
