# main.py
# FastAPI app: geodata lookups, trip validation / generation / coordinate resolution

import json
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
import trips
from models import (
    EnrichedItinerary,
    FreePlanRequest,
    TripCreateRequest,
    TripCreateResponse,
    TripInitRequest,
    TripInitResponse,
    TripPlanResponse,
    TripResolveRequest,
)
from providers import foursquare, geo, groq, overpass
from utils import TripError, UpstreamError, run_with_timeout

app = FastAPI(title="WanderLust Trip Planner API", version="0.5.0")

origins = [config.FRONTEND_LOCAL]
if config.FRONTEND_PROD:
    origins.append(config.FRONTEND_PROD)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# logging
logging.basicConfig(level=logging.INFO)
log = logging.getLogger("wanderlust")


def _error(status: int, error: str, details=None) -> JSONResponse:
    body = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status, content=body)


# global JSON error handling, always {error, details?}
# - validation problems -> 400
# - TripError -> its own status
# - upstream failures -> 500 with a generic message, cause logged only
# - anything else -> 500 "Server error"
@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    log.warning("HTTP %s: %s", exc.status_code, exc.detail)
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errs = exc.errors()
    if any(e.get("type") == "json_invalid" for e in errs):
        return _error(400, "Invalid JSON in request body")
    details = [f"{'.'.join(str(p) for p in e.get('loc', ())[1:]) or 'body'}: {e.get('msg')}" for e in errs]
    return _error(400, "Validation failed", details)


@app.exception_handler(TripError)
async def trip_error_handler(request: Request, exc: TripError):
    if exc.status_code >= 500:
        log.error("%s %s: %s", request.url.path, exc.error, exc.details)
    return _error(exc.status_code, exc.error, exc.details)


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    log.error("upstream failure on %s: %s", request.url.path, exc)
    return _error(500, "Failed to connect to location services" if exc.service != "groq" else "AI service error")


@app.exception_handler(groq.GeneratorError)
async def generator_error_handler(request: Request, exc: groq.GeneratorError):
    log.error("generator output unusable: %s", exc.error)
    return _error(500, exc.error, exc.details)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # log stack once. do not leak details to client
    log.exception("Unhandled exception")
    return _error(500, "Server error")


# ---- geodata lookups


@app.get("/places/autocomplete")
async def places_autocomplete(q: Optional[str] = None):
    if not q:
        raise HTTPException(status_code=400, detail='Query parameter "q" is required')
    hits = await geo.autocomplete(q, limit=5)
    return {
        "predictions": [
            {"place_id": c.id, "description": c.address or c.name, "lat": c.lat, "lon": c.lon, "type": c.type}
            for c in hits
        ]
    }


@app.get("/places/nearby")
async def places_nearby(
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    radius: str = "2000",
    place_type: Optional[str] = Query(None, alias="type"),
    category: Optional[str] = None,
    limit: int = 20,
):
    try:
        flat, flon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail='Valid "lat" and "lon" query parameters are required')
    try:
        radius_m = int(radius)
    except ValueError:
        radius_m = 0
    if radius_m < 1 or radius_m > 50000:
        raise HTTPException(status_code=400, detail="Radius must be between 1 and 50000 meters")

    kind = place_type or category or "tourist_attraction"
    places = await overpass.nearby(flat, flon, radius=radius_m, category=kind, limit=min(max(limit, 1), 100))
    return {
        "places": [
            {"id": c.id, "name": c.name, "lat": c.lat, "lon": c.lon, "type": c.type, "category": c.category}
            for c in places
        ]
    }


@app.get("/foursquare/autocomplete")
async def foursquare_autocomplete(
    query: Optional[str] = None,
    q: Optional[str] = None,
    lat: Optional[str] = None,
    lng: Optional[str] = None,
    limit: int = 5,
):
    hits = await foursquare.autocomplete(query or q or "", config.FOURSQUARE_SERVICE_KEY, lat=lat, lng=lng, limit=limit)
    return {
        "predictions": [
            {
                "place_id": c.id,
                "description": f"{c.name}, {c.address or ''}",
                "lat": c.lat,
                "lon": c.lon,
                "type": c.type,
                "name": c.name,
            }
            for c in hits
        ]
    }


@app.get("/foursquare/search")
async def foursquare_search(
    lat: Optional[str] = None,
    lng: Optional[str] = None,
    query: Optional[str] = None,
    radius: int = 10000,
    limit: int = 20,
    categories: Optional[str] = None,
):
    if not lat or not lng:
        raise HTTPException(status_code=400, detail="Missing lat/lng coordinates")
    try:
        flat, flng = float(lat), float(lng)
    except ValueError:
        raise HTTPException(status_code=400, detail="Missing lat/lng coordinates")

    hits = await foursquare.search(
        lat, lng, config.FOURSQUARE_SERVICE_KEY,
        query=query, radius=radius, limit=limit, categories=categories,
    )
    results = [
        {
            "id": c.id,
            "name": c.name,
            "category": c.type or "Unknown Category",
            "coordinates": {"lat": float(c.lat), "lng": float(c.lon)},
            "address": c.address or "Address not available",
        }
        for c in hits
    ]
    return {
        "success": True,
        "search_metadata": {
            "query": query,
            "location": {"lat": flat, "lng": flng, "radius_meters": radius},
            "filters": {"categories": categories or "all", "limit": limit},
        },
        "results": results,
        "summary": {
            "total_places_found": len(results),
            # ordered, de-duplicated
            "categories_found": list(dict.fromkeys(r["category"] for r in results)),
        },
    }


@app.get("/foursquare/details")
async def foursquare_details(fsq_place_id: Optional[str] = None):
    if not fsq_place_id:
        raise HTTPException(status_code=400, detail="Missing fsq_place_id parameter")
    return {"details": await foursquare.details(fsq_place_id, config.FOURSQUARE_SERVICE_KEY)}


# ---- trips


@app.post("/trip/init", response_model=TripInitResponse, response_model_exclude_none=True)
async def trip_init(req: TripInitRequest):
    """Check the destination exists and match requested place names to real places."""
    return await trips.init_trip(req)


@app.post("/trip/create", response_model=TripCreateResponse)
async def trip_create(req: TripCreateRequest):
    """Ask the LLM for a day-by-day plan over places already picked on the map."""
    return await trips.create_trip(req)


@app.post("/trip/resolve", response_model=EnrichedItinerary)
async def trip_resolve(req: TripResolveRequest):
    """Attach coordinates to every place of a generated itinerary."""
    return await trips.resolve_itinerary(req, destination=req.location)


@app.post("/trip/plan", response_model=TripPlanResponse)
async def trip_plan(req: TripInitRequest):
    return await trips.plan_trip(req)


@app.post("/plan")
async def free_plan(req: FreePlanRequest):
    """Free-form text plan built from places around the destination."""
    lat, lon = req.lat, req.lon
    if lat is None or lon is None:
        center, geo_err = await run_with_timeout(geo.geocode(req.destination), config.GEOCODE_TIMEOUT_S, "geocode")
        if geo_err or not center:
            raise HTTPException(status_code=400, detail="Geocoding failed or timed out")
        lat, lon = center

    # nearby data is context only; plan without it if Overpass is down
    places, err = await run_with_timeout(
        overpass.nearby(lat, lon, radius=3000, category="tourist_attractions", limit=30),
        config.PROVIDER_TIMEOUT_S, "overpass",
    )
    if err:
        log.warning("provider issue: %s", err)

    system_prompt = (
        "You are a helpful travel planner.\n"
        "Use the following nearby places data (from OpenStreetMap) to create a personalized trip plan.\n"
        "Make sure your output is structured and easy to use."
    )
    user_prompt = (
        f"Destination: {req.destination}\n"
        f"Dates: {req.dates}\n"
        f"Budget: {req.budget or 'Not specified'}\n"
        f"Interests: {', '.join(req.interests) or 'Not specified'}\n\n"
        f"Nearby places data:\n{json.dumps([c.model_dump(exclude_none=True) for c in places or []], indent=2)}\n\n"
        "Please create a suggested trip plan. Include key highlights, must-see places, and reasoning."
    )
    content = await groq.complete(
        [{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}],
        api_key=config.GROQ_API_KEY,
        model=config.GROQ_MODEL,
        timeout_s=config.GENERATOR_TIMEOUT_S,
    )
    return {"plan": content}


@app.get("/health")
def health():
    return {"ok": True}
