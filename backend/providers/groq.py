# providers/groq.py
# Itinerary generation via Groq chat completions (OpenAI compatible).
# The prompt asks for JSON only; nothing here trusts the model to comply.

import json
import logging
import re
from typing import List, Sequence

import httpx
from pydantic import ValidationError

from models import SelectedPlace, TripItinerary
from utils import Throttle, UpstreamError

log = logging.getLogger("wanderlust.groq")

GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_MODEL = "llama3-70b-8192"

# one generator call per second across the process
throttle = Throttle(min_interval=1.0)


class GeneratorError(Exception):
    """The model answered, but not with a usable itinerary."""

    def __init__(self, error: str, details: str | None = None):
        super().__init__(error)
        self.error = error
        self.details = details


SYSTEM_PROMPT = """You are an expert travel planner. Create practical day-by-day itineraries.

CRITICAL: Respond with ONLY valid JSON. No markdown, no explanations, just the JSON structure.

Budget Guidelines:
- low ($0-50/day): Free attractions, local food, walking tours, public transport
- moderate ($50-150/day): Mix of paid/free attractions, casual dining, occasional taxis
- luxury ($150+/day): Premium attractions, fine dining, private transport, guided tours

Time Slots:
- morning: 9:00 AM - 12:00 PM (start with popular attractions to avoid crowds)
- afternoon: 12:00 PM - 6:00 PM (main sightseeing time)
- evening: 6:00 PM - 10:00 PM (dining, nightlife, sunset views)

Planning Rules:
1. Include ALL provided places
2. Group nearby places on same days to minimize travel
3. Don't overcrowd days (max 4 places per day)
4. Consider opening hours and crowd patterns
5. Leave time for meals and rest"""


def build_user_prompt(destination: str, places: Sequence[SelectedPlace], days: int, budget: str) -> str:
    lines = []
    for p in places:
        line = f"{p.name} ({p.lat}, {p.lon})"
        if p.type:
            line += f" [{p.type}]"
        lines.append(line)
    places_info = "\n".join(lines)
    return f"""Plan a {days}-day trip to {destination} with {budget} budget.

Selected Places:
{places_info}

Create an itinerary that includes ALL these {len(places)} places distributed across {days} days.

Respond with ONLY this JSON format:
{{
  "destination": "{destination}",
  "days": {days},
  "budget": "{budget}",
  "itinerary": [
    {{
      "day": 1,
      "places": [
        {{
          "name": "Place Name",
          "lat": "exact_latitude",
          "lon": "exact_longitude",
          "time": "morning",
          "type": "attraction_type"
        }}
      ]
    }}
  ]
}}

Use EXACT coordinates and names from the places list above."""


_FENCE = re.compile(r"```(?:json)?\s*")


def clean_json(text: str) -> str:
    """Strip ```json fences the model sometimes adds anyway."""
    return _FENCE.sub("", text).strip()


async def complete(
    messages: List[dict],
    api_key: str,
    model: str = DEFAULT_MODEL,
    timeout_s: float = 45.0,
    temperature: float = 0.2,
    max_tokens: int = 4000,
    client: httpx.AsyncClient | None = None,
) -> str:
    """One throttled chat completion. Returns the message content."""
    if not api_key:
        raise UpstreamError("groq", "GROQ_API_KEY not configured")

    payload = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "top_p": 1,
        "stream": False,
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    delay = await throttle.wait()
    if delay:
        log.info("groq throttle: waited %.2fs", delay)
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout_s) as c:
                r = await c.post(GROQ_API_URL, json=payload, headers=headers)
        else:
            r = await client.post(GROQ_API_URL, json=payload, headers=headers, timeout=timeout_s)
    except httpx.TimeoutException as e:
        raise UpstreamError("groq", f"timed out after {timeout_s}s") from e
    except httpx.HTTPError as e:
        raise UpstreamError("groq", f"request failed: {e}") from e
    finally:
        throttle.mark()

    if r.status_code != 200:
        log.error("groq status %s: %s", r.status_code, r.text[:400])
        detail = "Rate limit exceeded" if r.status_code == 429 else "AI service unavailable"
        raise UpstreamError("groq", detail, r.status_code)

    try:
        content = r.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise GeneratorError("Empty AI response") from e
    if not content:
        raise GeneratorError("Empty AI response")
    return content


def parse_itinerary(content: str) -> TripItinerary:
    try:
        data = json.loads(clean_json(content))
    except json.JSONDecodeError as e:
        log.error("LLM JSON parse error: %s", e)
        raise GeneratorError("AI returned invalid format", "Generated response was not valid JSON") from e

    if not isinstance(data, dict) or not data.get("destination") or not isinstance(data.get("itinerary"), list):
        raise GeneratorError("AI returned incomplete itinerary")
    try:
        return TripItinerary.model_validate(data)
    except ValidationError as e:
        log.error("LLM itinerary failed validation: %s", e)
        raise GeneratorError("AI returned incomplete itinerary") from e


async def generate_itinerary(
    destination: str,
    places: Sequence[SelectedPlace],
    days: int,
    budget: str,
    api_key: str,
    model: str = DEFAULT_MODEL,
    timeout_s: float = 45.0,
    client: httpx.AsyncClient | None = None,
) -> TripItinerary:
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(destination, places, days, budget)},
    ]
    content = await complete(messages, api_key, model=model, timeout_s=timeout_s, client=client)
    return parse_itinerary(content)
