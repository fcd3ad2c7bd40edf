import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

import config
import trips
from main import app
from models import Candidate, ItineraryDay, ItineraryPlace, TripItinerary
from providers import groq, overpass
from utils import UpstreamError

client = TestClient(app)

ROME = Candidate(id="r1", name="Roma", lat="41.8933", lon="12.4829", address="Roma, Lazio, Italia", type="city")
POOL = [
    Candidate(id="n1", name="Colosseo", lat="41.8902", lon="12.4922", type="monument"),
    Candidate(id="n2", name="Fontana di Trevi", lat="41.9009", lon="12.4833", type="attraction"),
]


def _autocomplete(known: dict):
    async def fake(q, limit=5, client=None):
        return known.get(q, [])
    return fake


def _itinerary(*days) -> TripItinerary:
    return TripItinerary(
        destination="Rome", days=len(days), budget="moderate",
        itinerary=[
            ItineraryDay(day=i + 1, places=[ItineraryPlace(name=n, time=t) for n, t in places])
            for i, places in enumerate(days)
        ],
    )


# ---- /trip/init


@patch.object(trips.overpass, "nearby", new_callable=AsyncMock)
@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock)
def test_init_validates_and_reports_missing_places(mock_auto, mock_nearby):
    mock_auto.return_value = [ROME]
    mock_nearby.return_value = POOL

    r = client.post("/trip/init", json={
        "destination": "Rome", "places": ["Colosseum", "Trevi Fountain", "NonexistentPlaceXYZ"],
        "days": 2, "budget": "moderate",
    })
    assert r.status_code == 200
    data = r.json()
    assert data["destination"] == {"name": "Roma", "place_id": "r1", "lat": "41.8933", "lon": "12.4829"}
    assert [p["name"] for p in data["places"]] == ["Colosseo", "Fontana di Trevi"]
    assert data["days"] == 2
    info = data["validation_info"]
    assert info["total_places_requested"] == 3
    assert info["valid_places_found"] == 2
    assert info["invalid_places"] == ["NonexistentPlaceXYZ"]
    assert "1 place(s)" in info["warnings"][0]
    assert mock_nearby.await_args.kwargs["radius"] == config.VALIDATION_RADIUS_M


def test_init_collects_all_validation_errors():
    r = client.post("/trip/init", json={"destination": " ", "places": [], "days": 0, "budget": "cheap"})
    assert r.status_code == 400
    data = r.json()
    assert data["error"] == "Validation failed"
    assert len(data["details"]) == 4


@pytest.mark.parametrize("days", [31, -1])
def test_init_days_out_of_range(days):
    r = client.post("/trip/init", json={"destination": "Rome", "places": ["x"], "days": days, "budget": "low"})
    assert r.status_code == 400
    assert any("Days" in d for d in r.json()["details"])


def test_init_rejects_blank_place_names():
    r = client.post("/trip/init", json={"destination": "Rome", "places": ["ok", ""], "days": 1, "budget": "low"})
    assert r.status_code == 400
    assert r.json()["details"] == ["All places must be non-empty strings"]


def test_invalid_json_body():
    r = client.post("/trip/init", content=b"{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid JSON in request body"}


@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock, return_value=[])
def test_init_unknown_destination_is_404(mock_auto):
    r = client.post("/trip/init", json={"destination": "Atlantis", "places": ["x"], "days": 1, "budget": "low"})
    assert r.status_code == 404
    assert r.json()["error"] == 'Destination "Atlantis" not found'


@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock, side_effect=UpstreamError("nominatim", "status 503", 503))
def test_init_destination_service_down_is_500(mock_auto):
    r = client.post("/trip/init", json={"destination": "Rome", "places": ["x"], "days": 1, "budget": "low"})
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to validate destination", "details": ["Autocomplete service unavailable"]}


@patch.object(trips.overpass, "nearby", new_callable=AsyncMock, side_effect=UpstreamError("overpass", "status 504", 504))
@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock, return_value=[ROME])
def test_init_nearby_service_down_is_500(mock_auto, mock_nearby):
    r = client.post("/trip/init", json={"destination": "Rome", "places": ["x"], "days": 1, "budget": "low"})
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to validate places"


@patch.object(trips.overpass, "nearby", new_callable=AsyncMock, return_value=POOL)
@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock, return_value=[ROME])
def test_init_no_matches_is_404(mock_auto, mock_nearby):
    r = client.post("/trip/init", json={"destination": "Rome", "places": ["Big Ben"], "days": 1, "budget": "low"})
    assert r.status_code == 404
    assert r.json()["details"] == ['"Big Ben" not found near Rome']


@patch.object(trips.overpass, "nearby", new_callable=AsyncMock, return_value=POOL)
@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock, return_value=[ROME])
def test_init_reuses_cached_lookups(mock_auto, mock_nearby):
    body = {"destination": "Rome", "places": ["Colosseum"], "days": 1, "budget": "low"}
    assert client.post("/trip/init", json=body).status_code == 200
    assert client.post("/trip/init", json={**body, "destination": " ROME "}).status_code == 200
    assert mock_auto.await_count == 1
    assert mock_nearby.await_count == 1


# ---- /trip/create


CREATE_BODY = {
    "destination": {"name": "Rome", "lat": "41.8933", "lon": "12.4829"},
    "selectedPlaces": [
        {"name": "Colosseo", "lat": "41.8902", "lon": "12.4922", "type": "monument"},
        {"name": "Pantheon", "lat": 41.8986, "lon": 12.4769},
    ],
    "days": 2,
    "budget": "luxury",
}


@patch.object(trips.groq, "generate_itinerary", new_callable=AsyncMock)
def test_create_fills_missing_coordinates(mock_gen):
    mock_gen.return_value = TripItinerary(
        destination="Rome", days=2, budget="luxury",
        itinerary=[
            ItineraryDay(day=1, places=[
                ItineraryPlace(name="The Colosseo", time="morning"),
                ItineraryPlace(name="Pantheon", time="afternoon", lat="41.8986", lon="12.4769"),
            ]),
            ItineraryDay(day=2, places=[ItineraryPlace(name="Gelato tour", time="evening")]),
        ],
    )
    r = client.post("/trip/create", json=CREATE_BODY)
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    day1, day2 = data["itinerary"]["itinerary"]
    assert (day1["places"][0]["lat"], day1["places"][0]["lon"]) == ("41.8902", "12.4922")
    assert day1["places"][0]["type"] == "monument"
    # nothing to match: destination coordinates
    assert (day2["places"][0]["lat"], day2["places"][0]["lon"]) == ("41.8933", "12.4829")
    assert data["planning_info"]["places_included"] == 2
    assert data["planning_info"]["model"] == config.GROQ_MODEL

    args = mock_gen.await_args
    assert args.args[0] == "Rome"
    assert args.args[2] == 2
    assert args.kwargs["timeout_s"] == config.GENERATOR_TIMEOUT_S


def test_create_validation_joins_details():
    body = {**CREATE_BODY, "selectedPlaces": [{"name": "No coords"}], "budget": "cheap"}
    r = client.post("/trip/create", json=body)
    assert r.status_code == 400
    assert r.json()["details"] == (
        "Place 1 (No coords) missing required coordinates; Budget must be one of: low, moderate, luxury"
    )


def test_create_caps_selected_places():
    body = {**CREATE_BODY, "selectedPlaces": [{"name": f"P{i}", "lat": "1", "lon": "2"} for i in range(21)]}
    r = client.post("/trip/create", json=body)
    assert r.status_code == 400
    assert "Maximum 20 places" in r.json()["details"]


@patch.object(trips.groq, "generate_itinerary", new_callable=AsyncMock,
              side_effect=groq.GeneratorError("AI returned invalid format", "Generated response was not valid JSON"))
def test_create_malformed_generator_output_is_500(mock_gen):
    r = client.post("/trip/create", json=CREATE_BODY)
    assert r.status_code == 500
    assert r.json() == {"error": "AI returned invalid format", "details": "Generated response was not valid JSON"}


@patch.object(trips.groq, "generate_itinerary", new_callable=AsyncMock,
              side_effect=UpstreamError("groq", "Rate limit exceeded", 429))
def test_create_rate_limited_generator(mock_gen):
    r = client.post("/trip/create", json=CREATE_BODY)
    assert r.status_code == 500
    assert r.json() == {"error": "AI service error", "details": "Rate limit exceeded"}


def test_create_generator_timeout_is_500_without_retry(monkeypatch):
    attempts = []

    def handler(request: httpx.Request):
        attempts.append(request)
        raise httpx.ReadTimeout("no answer", request=request)

    real_complete = groq.complete

    async def complete(messages, api_key, **kwargs):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as c:
            return await real_complete(messages, api_key, **{**kwargs, "client": c})

    monkeypatch.setattr(config, "GROQ_API_KEY", "gk")
    monkeypatch.setattr(groq, "complete", complete)

    r = client.post("/trip/create", json=CREATE_BODY)
    assert r.status_code == 500
    assert r.json() == {"error": "AI service error", "details": "AI service unavailable"}
    assert len(attempts) == 1


@patch.object(trips.groq, "generate_itinerary", new_callable=AsyncMock)
def test_create_replaces_placeholder_coordinates(mock_gen):
    mock_gen.return_value = TripItinerary(
        destination="Rome", days=1, budget="luxury",
        itinerary=[ItineraryDay(day=1, places=[
            ItineraryPlace(name="Colosseo", time="morning", lat="exact_latitude", lon="exact_longitude"),
            ItineraryPlace(name="Gelato tour", time="evening", lat="nan", lon="12.5"),
        ])],
    )
    r = client.post("/trip/create", json=CREATE_BODY)
    assert r.status_code == 200
    colosseo, gelato = r.json()["itinerary"]["itinerary"][0]["places"]
    assert (colosseo["lat"], colosseo["lon"]) == ("41.8902", "12.4922")
    assert (gelato["lat"], gelato["lon"]) == ("41.8933", "12.4829")


# ---- /trip/resolve


def _resolve_body(itinerary: TripItinerary, **extra) -> dict:
    return {**itinerary.model_dump(), **extra}


@patch.object(trips.overpass, "nearby", new_callable=AsyncMock, return_value=POOL)
def test_resolve_rome_scenario_falls_back_for_unknown_place(mock_nearby):
    itinerary = _itinerary(
        [("Colosseum", "morning"), ("Trevi Fountain", "afternoon")],
        [("NonexistentPlaceXYZ", "morning")],
    )
    with patch.object(trips.geo, "autocomplete", side_effect=_autocomplete({"Rome": [ROME]})):
        r = client.post("/trip/resolve", json=_resolve_body(itinerary))

    assert r.status_code == 200
    data = r.json()
    info = data["resolution_info"]
    assert info["total_places"] == 3
    assert info["resolved_places"] == 2
    assert info["unresolved_places"] == ["NonexistentPlaceXYZ"]
    assert isinstance(info["resolution_time"], int)

    places = [p for d in data["itinerary"] for p in d["places"]]
    assert len(places) == 3
    assert places[0]["place_id"] == "n1"
    assert places[1]["lat"] == "41.9009"
    assert places[1]["resolution"] == "resolved"
    assert (places[2]["lat"], places[2]["lon"]) == (ROME.lat, ROME.lon)
    assert places[2]["resolution"] == "fallback"
    assert places[2]["time"] == "morning"
    assert mock_nearby.await_args.kwargs["radius"] == config.RESOLVE_RADIUS_M


@patch.object(trips.overpass, "nearby", new_callable=AsyncMock, return_value=[])
def test_resolve_uses_text_search_when_pool_misses(mock_nearby):
    pantheon = Candidate(id="p9", name="Pantheon", lat="41.8986", lon="12.4769", type="monument")
    itinerary = _itinerary([("Pantheon", "evening")])
    with patch.object(trips.geo, "autocomplete", side_effect=_autocomplete({"Pantheon Roma": [pantheon]})):
        r = client.post("/trip/resolve", json=_resolve_body(itinerary, location=ROME.model_dump()))

    place = r.json()["itinerary"][0]["places"][0]
    assert place["place_id"] == "p9"
    assert place["type"] == "monument"


@patch.object(trips.overpass, "nearby", new_callable=AsyncMock, side_effect=UpstreamError("overpass", "down"))
def test_resolve_single_place_failure_becomes_fallback(mock_nearby):
    async def flaky(q, limit=5, client=None):
        if q.startswith("Broken"):
            raise UpstreamError("nominatim", "status 500", 500)
        return [Candidate(id="ok", name=q, lat="1.0", lon="2.0")]

    itinerary = _itinerary([("Broken Place", "morning"), ("Fine Place", "afternoon")])
    with patch.object(trips.geo, "autocomplete", side_effect=flaky):
        r = client.post("/trip/resolve", json=_resolve_body(itinerary, location=ROME.model_dump()))

    assert r.status_code == 200
    data = r.json()
    broken, fine = data["itinerary"][0]["places"]
    assert broken["resolution"] == "fallback"
    assert (broken["lat"], broken["lon"]) == (ROME.lat, ROME.lon)
    assert fine["lat"] == "1.0"
    assert data["resolution_info"]["unresolved_places"] == ["Broken Place"]


@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock, return_value=[])
def test_resolve_unknown_destination_aborts(mock_auto):
    r = client.post("/trip/resolve", json=_resolve_body(_itinerary([("Colosseum", "morning")])))
    assert r.status_code == 404


def test_resolve_requires_itinerary_structure():
    r = client.post("/trip/resolve", json={"destination": "Rome"})
    assert r.status_code == 400
    assert r.json()["error"] == "Validation failed"


@pytest.mark.parametrize("destination", ["", "   "])
@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock, return_value=[ROME])
def test_resolve_blank_destination_is_400(mock_auto, destination):
    body = {"destination": destination, "itinerary": [{"day": 1, "places": [{"name": "Colosseum", "time": "morning"}]}]}
    r = client.post("/trip/resolve", json=body)
    assert r.status_code == 400
    assert r.json()["error"] == "Validation failed"
    mock_auto.assert_not_awaited()


def test_resolve_survives_html_from_overpass():
    real_nearby = overpass.nearby

    async def nearby(lat, lon, **kwargs):
        busy = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>rate limited, try later</html>"))
        async with httpx.AsyncClient(transport=busy) as c:
            return await real_nearby(lat, lon, **{**kwargs, "client": c})

    pantheon = Candidate(id="p9", name="Pantheon", lat="41.8986", lon="12.4769")
    itinerary = _itinerary([("Pantheon", "evening")])
    with patch.object(trips.overpass, "nearby", side_effect=nearby), \
            patch.object(trips.geo, "autocomplete", side_effect=_autocomplete({"Pantheon Roma": [pantheon]})):
        r = client.post("/trip/resolve", json=_resolve_body(itinerary, location=ROME.model_dump()))

    assert r.status_code == 200
    place = r.json()["itinerary"][0]["places"][0]
    assert place["place_id"] == "p9"
    assert place["resolution"] == "resolved"


@patch.object(trips.overpass, "nearby", new_callable=AsyncMock, return_value=POOL)
def test_resolve_caches_coordinates(mock_nearby):
    itinerary = _itinerary([("Colosseum", "morning")])
    search = AsyncMock(return_value=[])
    with patch.object(trips.geo, "autocomplete", search):
        body = _resolve_body(itinerary, location=ROME.model_dump())
        client.post("/trip/resolve", json=body)
        with patch.object(trips, "find_match", side_effect=AssertionError("cache should answer")):
            r = client.post("/trip/resolve", json=body)
    assert r.json()["resolution_info"]["resolved_places"] == 1
    search.assert_not_awaited()


def test_places_in_one_day_resolve_concurrently(monkeypatch):
    monkeypatch.setattr(config, "PROVIDER_TIMEOUT_S", 2)
    dest = trips.Destination(name="Roma", lat="41.9", lon="12.5")

    async def scenario():
        second_started = asyncio.Event()

        async def search(q, limit=5, client=None):
            if q.startswith("First"):
                # only finishes if the second lookup runs at the same time
                await second_started.wait()
            else:
                second_started.set()
            return [Candidate(id=q, name=q, lat="1", lon="2")]

        with patch.object(trips.geo, "autocomplete", side_effect=search), \
                patch.object(trips.overpass, "nearby", new_callable=AsyncMock, return_value=[]):
            return await trips.resolve_itinerary(_itinerary([("First", "morning"), ("Second", "afternoon")]), destination=dest)

    result = asyncio.run(scenario())
    assert result.resolution_info.resolved_places == 2


# ---- /trip/plan


@patch.object(trips.groq, "generate_itinerary", new_callable=AsyncMock)
@patch.object(trips.overpass, "nearby", new_callable=AsyncMock, return_value=POOL)
@patch.object(trips.geo, "autocomplete", new_callable=AsyncMock)
def test_plan_end_to_end(mock_auto, mock_nearby, mock_gen):
    mock_auto.side_effect = _autocomplete({"Rome": [ROME]})
    # the model invents a stop the user never asked for
    mock_gen.return_value = _itinerary(
        [("Colosseo", "morning"), ("Fontana di Trevi", "afternoon")],
        [("NonexistentPlaceXYZ", "evening")],
    )
    r = client.post("/trip/plan", json={
        "destination": "Rome", "places": ["Colosseum", "Trevi Fountain", "NonexistentPlaceXYZ"],
        "days": 2, "budget": "moderate",
    })
    assert r.status_code == 200
    data = r.json()
    assert data["validation_info"]["invalid_places"] == ["NonexistentPlaceXYZ"]
    assert data["planning_info"]["places_included"] == 2
    assert data["resolution_info"]["resolved_places"] == 2
    assert data["resolution_info"]["unresolved_places"] == ["NonexistentPlaceXYZ"]
    last = data["itinerary"][1]["places"][0]
    assert (last["lat"], last["lon"]) == (ROME.lat, ROME.lon)

    selected = mock_gen.await_args.args[1]
    assert [p.name for p in selected] == ["Colosseo", "Fontana di Trevi"]
