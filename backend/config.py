# config.py
# env driven settings, read once at import. Tests monkeypatch attributes here.

import os
from dotenv import load_dotenv

load_dotenv()

# CORS origins
FRONTEND_LOCAL = "http://localhost:3000"
FRONTEND_PROD = os.getenv("FRONTEND_PROD", "")

# keys
FOURSQUARE_SERVICE_KEY = os.getenv("FOURSQUARE_SERVICE_KEY", "")
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama3-70b-8192")

# timeouts (seconds)
GEOCODE_TIMEOUT_S = int(os.getenv("GEOCODE_TIMEOUT_S", "10"))
PROVIDER_TIMEOUT_S = int(os.getenv("PROVIDER_TIMEOUT_S", "20"))
GENERATOR_TIMEOUT_S = int(os.getenv("GENERATOR_TIMEOUT_S", "45"))

# search radii (meters) used when checking / resolving places
VALIDATION_RADIUS_M = int(os.getenv("VALIDATION_RADIUS_M", "10000"))
RESOLVE_RADIUS_M = int(os.getenv("RESOLVE_RADIUS_M", "20000"))

MAX_TRIP_DAYS = 30
MAX_SELECTED_PLACES = 20
