# models.py
# typed request/response models and the shared Candidate definition

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, List, Literal, Optional

Budget = Literal["low", "moderate", "luxury"]
TimeSlot = Literal["morning", "afternoon", "evening"]

VALID_BUDGETS = ("low", "moderate", "luxury")


def _coord_text(v):
    # providers hand back numbers or strings; keep decimal degrees as text
    if v is None or isinstance(v, str):
        return v
    return str(v)


class Candidate(BaseModel):
    """A geocoded place returned by one provider. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    lat: str
    lon: str
    address: Optional[str] = None
    type: Optional[str] = None
    # the category the caller searched under (nearby search only)
    category: Optional[str] = None

    @field_validator("id", "lat", "lon", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _coord_text(v)


class Destination(BaseModel):
    name: str
    place_id: Optional[str] = None
    lat: str
    lon: str

    @field_validator("place_id", "lat", "lon", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _coord_text(v)


class ValidatedPlace(BaseModel):
    name: str
    id: str
    lat: str
    lon: str


# request bodies are loosely typed so trips.py can report every problem at once
class TripInitRequest(BaseModel):
    destination: Optional[str] = None
    places: Optional[List[Any]] = None
    days: Optional[float] = None
    budget: Optional[str] = None


class ValidationInfo(BaseModel):
    total_places_requested: int
    valid_places_found: int
    invalid_places: Optional[List[str]] = None
    warnings: Optional[List[str]] = None


class TripInitResponse(BaseModel):
    destination: Destination
    places: List[ValidatedPlace]
    days: int
    budget: Budget
    validation_info: ValidationInfo


class SelectedPlace(BaseModel):
    name: Optional[str] = None
    lat: Optional[str] = None
    lon: Optional[str] = None
    type: Optional[str] = None
    id: Optional[str] = None

    @field_validator("lat", "lon", "id", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _coord_text(v)


class TripCreateRequest(BaseModel):
    destination: Optional[SelectedPlace] = None
    selectedPlaces: Optional[List[SelectedPlace]] = None
    days: Optional[float] = None
    budget: Optional[str] = None


class ItineraryPlace(BaseModel):
    name: str
    time: TimeSlot = "morning"
    lat: Optional[str] = None
    lon: Optional[str] = None
    type: Optional[str] = None

    @field_validator("lat", "lon", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _coord_text(v)

    @field_validator("time", mode="before")
    @classmethod
    def lower_slot(cls, v):
        return v.lower().strip() if isinstance(v, str) else v


class ItineraryDay(BaseModel):
    day: int
    places: List[ItineraryPlace] = Field(default_factory=list)


class TripItinerary(BaseModel):
    destination: str = Field(..., min_length=1)
    days: Optional[int] = None
    budget: Optional[str] = None
    itinerary: List[ItineraryDay]

    @field_validator("destination", mode="before")
    @classmethod
    def strip_destination(cls, v):
        return v.strip() if isinstance(v, str) else v


class TripResolveRequest(TripItinerary):
    # skips the destination lookup when the caller already has coordinates
    location: Optional[Destination] = None


class PlanningInfo(BaseModel):
    model: str
    places_included: int
    generation_time: int


class TripCreateResponse(BaseModel):
    success: bool = True
    itinerary: TripItinerary
    planning_info: PlanningInfo


class EnrichedPlace(BaseModel):
    name: str
    time: TimeSlot
    lat: str
    lon: str
    place_id: Optional[str] = None
    address: Optional[str] = None
    type: Optional[str] = None
    # "fallback" means lat/lon are the destination's own coordinates
    resolution: Literal["resolved", "fallback"] = "resolved"


class EnrichedDay(BaseModel):
    day: int
    places: List[EnrichedPlace]


class ResolutionInfo(BaseModel):
    total_places: int
    resolved_places: int
    unresolved_places: List[str]
    resolution_time: int = Field(..., description="milliseconds")


class EnrichedItinerary(BaseModel):
    destination: str
    days: Optional[int] = None
    budget: Optional[str] = None
    itinerary: List[EnrichedDay]
    resolution_info: ResolutionInfo


class FreePlanRequest(BaseModel):
    destination: str
    dates: str
    lat: Optional[float] = None
    lon: Optional[float] = None
    budget: Optional[str] = None
    interests: List[str] = Field(default_factory=list)


class TripPlanResponse(EnrichedItinerary):
    """End-to-end /trip/plan result: resolved itinerary plus how we got there."""
    validation_info: ValidationInfo
    planning_info: PlanningInfo
