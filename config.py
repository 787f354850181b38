import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=env_path)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Time zone used when rendering conflict messages for people
DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "UTC")

# Recurring series without an explicit end date run for this many months
DEFAULT_RECURRENCE_MONTHS = int(os.getenv("DEFAULT_RECURRENCE_MONTHS", "3"))

# Rate-limit backoff for the row store: delay * 2**attempt
STORE_MAX_RETRIES = int(os.getenv("STORE_MAX_RETRIES", "3"))
STORE_RETRY_DELAY = float(os.getenv("STORE_RETRY_DELAY", "1.0"))

KNOWN_AUTHORIZERS = [
    name.strip()
    for name in os.getenv("KNOWN_AUTHORIZERS", "Georgina,Lesley,Jocelyn,Elizabeth,Sasha").split(",")
    if name.strip()
]

_DEFAULT_ROOMS = [
    {"id": "room-main-hall", "name": "Main Hall", "description": "Large hall for events", "capacity": 120},
    {"id": "room-meeting", "name": "Meeting Room", "description": None, "capacity": 12},
    {"id": "room-kitchen", "name": "Kitchen", "description": None, "capacity": 8},
]

# JSON list of {"id", "name", "description"?, "capacity"?} loaded into the store at startup
SEED_ROOMS = json.loads(os.getenv("SEED_ROOMS")) if os.getenv("SEED_ROOMS") else _DEFAULT_ROOMS
