# providers/foursquare.py
# Foursquare Places API: autocomplete, nearby search, details by id

import logging
from typing import List, Optional

import httpx

from models import Candidate
from utils import UpstreamError

log = logging.getLogger("wanderlust.foursquare")

BASE_URL = "https://places-api.foursquare.com"
API_VERSION = "2025-06-17"
# keep search responses small, extra fields cost API credits
SEARCH_FIELDS = "fsq_place_id,name,latitude,longitude,location,categories"
DETAIL_FIELDS = (
    "fsq_place_id,name,latitude,longitude,location,categories,rating,price,hours,"
    "website,tel,email,description,photos,attributes"
)


def _headers(api_key: str) -> dict:
    return {
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
        "X-Places-Api-Version": API_VERSION,
    }


async def _get(path: str, params: dict, api_key: str, client: httpx.AsyncClient | None) -> dict:
    if not api_key:
        raise UpstreamError("foursquare", "FOURSQUARE_SERVICE_KEY not configured")
    url = f"{BASE_URL}{path}"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=20.0) as c:
                r = await c.get(url, params=params, headers=_headers(api_key))
        else:
            r = await client.get(url, params=params, headers=_headers(api_key))
    except httpx.HTTPError as e:
        raise UpstreamError("foursquare", f"request failed: {e}") from e
    if r.status_code != 200:
        log.warning("foursquare %s status %s: %s", path, r.status_code, r.text[:400])
        raise UpstreamError("foursquare", f"status {r.status_code}", r.status_code)
    try:
        return r.json() or {}
    except ValueError as e:
        raise UpstreamError("foursquare", "response was not valid JSON") from e


def _to_candidate(place: dict) -> Optional[Candidate]:
    if place.get("latitude") is None or place.get("longitude") is None:
        return None
    loc = place.get("location") or {}
    cats = place.get("categories") or []
    return Candidate(
        id=place.get("fsq_place_id") or "",
        name=place.get("name") or "Unknown Place",
        lat=place["latitude"],
        lon=place["longitude"],
        address=loc.get("formatted_address") or loc.get("locality"),
        type=(cats[0].get("name") if cats else None) or "place",
    )


async def autocomplete(
    query: str,
    api_key: str,
    lat: Optional[str] = None,
    lng: Optional[str] = None,
    limit: int = 5,
    client: httpx.AsyncClient | None = None,
) -> List[Candidate]:
    if not query or len(query) < 2:
        return []
    params = {"query": query, "limit": limit}
    if lat and lng:
        params["ll"] = f"{lat},{lng}"
    data = await _get("/autocomplete", params, api_key, client)
    out: List[Candidate] = []
    for res in data.get("results") or []:
        # autocomplete wraps places; older payloads are flat
        cand = _to_candidate(res.get("place") or res)
        if cand:
            out.append(cand)
    return out


async def search(
    lat: str,
    lng: str,
    api_key: str,
    query: Optional[str] = None,
    radius: int = 10000,
    limit: int = 20,
    categories: Optional[str] = None,
    client: httpx.AsyncClient | None = None,
) -> List[Candidate]:
    params = {"ll": f"{lat},{lng}", "radius": radius, "limit": limit, "fields": SEARCH_FIELDS}
    if query:
        params["query"] = query
    if categories:
        params["categories"] = categories
    data = await _get("/places/search", params, api_key, client)
    out: List[Candidate] = []
    for place in data.get("results") or []:
        cand = _to_candidate(place)
        if cand:
            out.append(cand)
    log.info("foursquare search %s,%s r=%s q=%r -> %d places", lat, lng, radius, query, len(out))
    return out


async def details(fsq_place_id: str, api_key: str, client: httpx.AsyncClient | None = None) -> dict:
    data = await _get(f"/places/{fsq_place_id}", {"fields": DETAIL_FIELDS}, api_key, client)
    loc = data.get("location") or {}
    return {
        "id": data.get("fsq_place_id"),
        "name": data.get("name"),
        "lat": None if data.get("latitude") is None else str(data["latitude"]),
        "lon": None if data.get("longitude") is None else str(data["longitude"]),
        "categories": data.get("categories") or [],
        "rating": data.get("rating"),
        "price": data.get("price"),
        "address": {
            "formatted_address": loc.get("formatted_address"),
            "street": loc.get("address"),
            "city": loc.get("locality"),
            "state": loc.get("region"),
            "country": loc.get("country"),
            "postcode": loc.get("postcode"),
        },
        "hours": data.get("hours"),
        "website": data.get("website"),
        "tel": data.get("tel"),
        "email": data.get("email"),
        "description": data.get("description"),
        "photos": data.get("photos"),
        "attributes": data.get("attributes"),
    }
