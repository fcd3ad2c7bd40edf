# trips.py
# Trip flows: validate (init), generate (create), attach coordinates (resolve), and all three (plan).
# Destination / generator failures abort the request; a single place failing never does.

import asyncio
import logging
import math
import time
from typing import List, Optional, Sequence

import config
from models import (
    Candidate,
    Destination,
    EnrichedDay,
    EnrichedItinerary,
    EnrichedPlace,
    ItineraryPlace,
    PlanningInfo,
    ResolutionInfo,
    SelectedPlace,
    TripCreateRequest,
    TripCreateResponse,
    TripInitRequest,
    TripInitResponse,
    TripItinerary,
    TripPlanResponse,
    ValidatedPlace,
    ValidationInfo,
    VALID_BUDGETS,
)
from providers import geo, groq, overpass
from reconcile import Fallback, Resolved, Unresolved, apply_fallback, find_match, reconcile
from utils import ResultCache, TripError, UpstreamError, coordinate_cache, make_key, run_with_timeout, validation_cache

log = logging.getLogger("wanderlust.trips")


def _ms_since(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _valid_days(days) -> bool:
    return (
        isinstance(days, (int, float))
        and not isinstance(days, bool)
        and math.isfinite(days)
        and 1 <= days <= config.MAX_TRIP_DAYS
    )


# ---- validation


def validate_init(req: TripInitRequest) -> List[str]:
    errors = []
    if not req.destination or not req.destination.strip():
        errors.append("Destination is required and must be a non-empty string")
    if not req.places:
        errors.append("Places must be a non-empty array")
    elif any(not isinstance(p, str) or not p.strip() for p in req.places):
        errors.append("All places must be non-empty strings")
    if not _valid_days(req.days):
        errors.append(f"Days must be a positive number between 1 and {config.MAX_TRIP_DAYS}")
    if req.budget not in VALID_BUDGETS:
        errors.append(f"Budget must be one of: {', '.join(VALID_BUDGETS)}")
    return errors


def validate_create(req: TripCreateRequest) -> List[str]:
    errors = []
    dest = req.destination
    if not dest or not dest.name or not dest.lat or not dest.lon:
        errors.append("Destination must include name, latitude, and longitude")
    places = req.selectedPlaces or []
    if not places:
        errors.append("Selected places cannot be empty")
    elif len(places) > config.MAX_SELECTED_PLACES:
        errors.append(f"Maximum {config.MAX_SELECTED_PLACES} places allowed per trip")
    for i, p in enumerate(places):
        if not p.name or not p.lat or not p.lon:
            errors.append(f"Place {i + 1} ({p.name or 'unnamed'}) missing required coordinates")
    if not _valid_days(req.days):
        errors.append(f"Days must be a number between 1 and {config.MAX_TRIP_DAYS}")
    if req.budget not in VALID_BUDGETS:
        errors.append(f"Budget must be one of: {', '.join(VALID_BUDGETS)}")
    return errors


# ---- cached geo lookups


async def lookup_destination(name: str, cache: ResultCache = validation_cache) -> Destination:
    """First autocomplete hit for the destination. 404 if nothing, 500 if the service failed."""
    key = make_key("dest", name)
    hit = cache.get(key)
    if hit is None:
        try:
            predictions = await asyncio.wait_for(geo.autocomplete(name), timeout=config.GEOCODE_TIMEOUT_S)
        except (UpstreamError, asyncio.TimeoutError) as e:
            log.error("destination lookup failed for %r: %s", name, e)
            raise TripError(500, "Failed to validate destination", ["Autocomplete service unavailable"]) from e
        if not predictions:
            raise TripError(404, f'Destination "{name}" not found', ["Please try a more specific location name"])
        hit = predictions[0]
        cache.put(key, hit)

    log.info("destination validated: %s", hit.address or hit.name)
    return Destination(name=hit.name, place_id=hit.id, lat=hit.lat, lon=hit.lon)


async def nearby_pool(
    lat: str,
    lon: str,
    radius: int,
    cache: ResultCache = validation_cache,
    limit: int = 100,
) -> tuple:
    """Candidate pool around a point. Cached as a tuple so readers cannot mutate it."""
    key = make_key(f"places{radius}", lat=lat, lon=lon)
    pool = cache.get(key)
    if pool is None:
        found = await asyncio.wait_for(
            overpass.nearby(float(lat), float(lon), radius=radius, category="tourist_attractions", limit=limit),
            timeout=config.PROVIDER_TIMEOUT_S,
        )
        pool = tuple(found)
        cache.put(key, pool)
    log.info("found %d nearby places around %s,%s (r=%sm)", len(pool), lat, lon, radius)
    return pool


# ---- /trip/init


async def init_trip(req: TripInitRequest, cache: ResultCache = validation_cache) -> TripInitResponse:
    errors = validate_init(req)
    if errors:
        raise TripError(400, "Validation failed", errors)

    log.info("validating trip to %s with %d places for %s days", req.destination, len(req.places), req.days)
    dest = await lookup_destination(req.destination.strip(), cache)

    try:
        pool = await nearby_pool(dest.lat, dest.lon, config.VALIDATION_RADIUS_M, cache)
    except (UpstreamError, asyncio.TimeoutError) as e:
        log.error("nearby lookup failed: %s", e)
        raise TripError(500, "Failed to validate places", ["Nearby places service unavailable"]) from e

    result = reconcile(pool, req.places)
    if not result.matched:
        raise TripError(
            404,
            "None of the requested places were found near the destination",
            [f'"{p}" not found near {req.destination}' for p in result.unresolved],
        )

    invalid = result.unresolved
    if invalid:
        log.warning("some places were not found: %s", ", ".join(invalid))
    log.info("trip validation complete: %d/%d places validated", result.resolved, result.total)

    return TripInitResponse(
        destination=dest,
        places=[
            ValidatedPlace(name=m.candidate.name, id=m.candidate.id, lat=m.lat, lon=m.lon)
            for m in result.matched
        ],
        days=int(req.days),
        budget=req.budget,
        validation_info=ValidationInfo(
            total_places_requested=len(req.places),
            valid_places_found=result.resolved,
            invalid_places=invalid or None,
            warnings=[f"{len(invalid)} place(s) were not found and will be excluded from your trip"] if invalid else None,
        ),
    )


# ---- /trip/create


async def generate(destination: str, places: Sequence[SelectedPlace], days: int, budget: str) -> TripItinerary:
    """Generator call with errors mapped to client-facing TripErrors."""
    try:
        return await groq.generate_itinerary(
            destination,
            places,
            days,
            budget,
            api_key=config.GROQ_API_KEY,
            model=config.GROQ_MODEL,
            timeout_s=config.GENERATOR_TIMEOUT_S,
        )
    except groq.GeneratorError as e:
        raise TripError(500, e.error, e.details) from e
    except UpstreamError as e:
        log.error("itinerary generator failed: %s", e)
        detail = "Rate limit exceeded" if e.status_code == 429 else "AI service unavailable"
        raise TripError(500, "AI service error", detail) from e


def _is_coord(v) -> bool:
    # models sometimes echo the prompt placeholders ("exact_latitude") instead of numbers
    try:
        return math.isfinite(float(v))
    except (TypeError, ValueError):
        return False


def fill_coordinates(itinerary: TripItinerary, selected: Sequence[SelectedPlace], dest_lat: str, dest_lon: str) -> int:
    """
    Places the model returned without coordinates are matched back to the
    places we sent it, else put at the destination. Returns the fallback count.
    """
    pool = [
        Candidate(id=p.id or p.name, name=p.name, lat=p.lat, lon=p.lon, type=p.type)
        for p in selected
    ]
    fallbacks = 0
    for day in itinerary.itinerary:
        for place in day.places:
            if _is_coord(place.lat) and _is_coord(place.lon):
                continue
            outcome = apply_fallback(find_match(place.name, pool) or Unresolved(place.name), dest_lat, dest_lon)
            place.lat, place.lon = outcome.lat, outcome.lon
            if isinstance(outcome, Resolved):
                place.type = place.type or outcome.candidate.type
            else:
                fallbacks += 1
    return fallbacks


async def create_trip(req: TripCreateRequest) -> TripCreateResponse:
    start = time.perf_counter()
    errors = validate_create(req)
    if errors:
        raise TripError(400, "Validation failed", "; ".join(errors))

    days = int(req.days)
    log.info("planning %d-day %s trip to %s with %d places", days, req.budget, req.destination.name, len(req.selectedPlaces))
    itinerary = await generate(req.destination.name, req.selectedPlaces, days, req.budget)

    missing = fill_coordinates(itinerary, req.selectedPlaces, req.destination.lat, req.destination.lon)
    if missing:
        log.warning("%d generated place(s) placed at destination coordinates", missing)

    elapsed = _ms_since(start)
    log.info("trip planning complete in %dms", elapsed)
    return TripCreateResponse(
        itinerary=itinerary,
        planning_info=PlanningInfo(
            model=config.GROQ_MODEL,
            places_included=len(req.selectedPlaces),
            generation_time=elapsed,
        ),
    )


# ---- /trip/resolve


async def resolve_place(
    name: str,
    dest: Destination,
    pool: Sequence[Candidate],
    cache: ResultCache = coordinate_cache,
):
    """cache -> candidate pool -> text search. Returns Resolved or Unresolved."""
    key = make_key("coord", name, lat=dest.lat, lon=dest.lon)
    hit = cache.get(key)
    if hit is not None:
        return Resolved(reference=name, candidate=hit, strategy="cache")

    match = find_match(name, pool)
    if match is None:
        log.info("fallback search for: %s", name)
        results = await geo.autocomplete(f"{name} {dest.name}", limit=1)
        if results:
            match = Resolved(reference=name, candidate=results[0], strategy="search")

    if match is None:
        log.info("could not resolve coordinates for: %s", name)
        return Unresolved(reference=name)
    cache.put(key, match.candidate)
    return match


def _enrich(place: ItineraryPlace, outcome) -> EnrichedPlace:
    if isinstance(outcome, Resolved):
        c = outcome.candidate
        return EnrichedPlace(
            name=place.name, time=place.time, lat=c.lat, lon=c.lon,
            place_id=c.id, address=c.address, type=c.type or place.type,
        )
    if isinstance(outcome, Fallback):
        return EnrichedPlace(name=place.name, time=place.time, lat=outcome.lat, lon=outcome.lon, type=place.type, resolution="fallback")
    raise TypeError(f"unexpected outcome {outcome!r}")


async def resolve_itinerary(
    itinerary: TripItinerary,
    destination: Optional[Destination] = None,
    extra_pool: Sequence[Candidate] = (),
    cache: ResultCache = coordinate_cache,
) -> EnrichedItinerary:
    start = time.perf_counter()
    if destination is None:
        destination = await lookup_destination(itinerary.destination, validation_cache)
    log.info("resolving coordinates for %s itinerary", itinerary.destination)

    try:
        pool = tuple(extra_pool) + await nearby_pool(destination.lat, destination.lon, config.RESOLVE_RADIUS_M, cache)
    except (UpstreamError, asyncio.TimeoutError) as e:
        # text search per place still works without a pool
        log.warning("nearby pool unavailable, using text search only: %s", e)
        pool = tuple(extra_pool)

    total = sum(len(d.places) for d in itinerary.itinerary)
    log.info("resolving %d places across %d days", total, len(itinerary.itinerary))

    days: List[EnrichedDay] = []
    unresolved: List[str] = []
    resolved = 0
    for day in itinerary.itinerary:
        results = await asyncio.gather(*[
            run_with_timeout(resolve_place(p.name, destination, pool, cache), config.PROVIDER_TIMEOUT_S, p.name)
            for p in day.places
        ])
        places = []
        for place, (outcome, err) in zip(day.places, results):
            if err:
                log.warning("resolving %r failed: %s", place.name, err)
                outcome = Unresolved(place.name)
            outcome = apply_fallback(outcome, destination.lat, destination.lon)
            if isinstance(outcome, Resolved):
                resolved += 1
            else:
                unresolved.append(place.name)
            places.append(_enrich(place, outcome))
        days.append(EnrichedDay(day=day.day, places=places))

    elapsed = _ms_since(start)
    log.info("coordinate resolution complete: %d/%d places resolved in %dms", resolved, total, elapsed)
    if unresolved:
        log.warning("unresolved places: %s", ", ".join(unresolved))

    return EnrichedItinerary(
        destination=itinerary.destination,
        days=itinerary.days,
        budget=itinerary.budget,
        itinerary=days,
        resolution_info=ResolutionInfo(
            total_places=total,
            resolved_places=resolved,
            unresolved_places=unresolved,
            resolution_time=elapsed,
        ),
    )


# ---- /trip/plan


async def plan_trip(req: TripInitRequest) -> TripPlanResponse:
    """validate -> generate -> resolve, in one request."""
    start = time.perf_counter()
    validated = await init_trip(req)
    dest = validated.destination

    selected = [SelectedPlace(name=p.name, id=p.id, lat=p.lat, lon=p.lon) for p in validated.places]
    itinerary = await generate(dest.name, selected, validated.days, validated.budget)
    gen_ms = _ms_since(start)

    # validated places first: the generator was told to reuse their names
    known = [Candidate(id=p.id, name=p.name, lat=p.lat, lon=p.lon) for p in validated.places]
    enriched = await resolve_itinerary(itinerary, destination=dest, extra_pool=known)

    return TripPlanResponse(
        **enriched.model_dump(),
        validation_info=validated.validation_info,
        planning_info=PlanningInfo(model=config.GROQ_MODEL, places_included=len(selected), generation_time=gen_ms),
    )
