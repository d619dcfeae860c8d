import os

from dotenv import load_dotenv

# Load environment variables from .env file, if it exists
load_dotenv()

# Time-tracking backend that owns sessions, geofence config and schedules
TIMECLOCK_API_URL = os.getenv("TIMECLOCK_API_URL", "http://localhost:8000/api")
TIMECLOCK_HTTP_TIMEOUT = float(os.getenv("TIMECLOCK_HTTP_TIMEOUT", "15"))

# Geofence
DEFAULT_GEOFENCE_RADIUS_M = float(os.getenv("DEFAULT_GEOFENCE_RADIUS_M", "100"))

# Consecutive out-of-range readings before an automatic clock-out
AUTO_CLOCK_OUT_AFTER = int(os.getenv("AUTO_CLOCK_OUT_AFTER", "2"))

# Exit coordinates are only sent when the fix is at least this precise
PRECISE_ACCURACY_M = float(os.getenv("PRECISE_ACCURACY_M", "10"))

# Positioning (seconds)
HIGH_ACCURACY_TIMEOUT_S = float(os.getenv("HIGH_ACCURACY_TIMEOUT_S", "10"))
LOW_ACCURACY_TIMEOUT_S = float(os.getenv("LOW_ACCURACY_TIMEOUT_S", "20"))
LOW_ACCURACY_MAX_AGE_S = float(os.getenv("LOW_ACCURACY_MAX_AGE_S", "60"))
WATCH_MAX_AGE_S = float(os.getenv("WATCH_MAX_AGE_S", "5"))

# Local storage for the offline clock queue
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./timeclock_offline.db")

# CORS
DEV_DOMAIN = os.getenv("DEV_DOMAIN", "http://localhost:5173")
PRODUCTION_DOMAIN = os.getenv("PRODUCTION_DOMAIN", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Local server (scripts/run.py)
APP_HOST = os.getenv("APP_HOST", "127.0.0.1")
APP_PORT = int(os.getenv("APP_PORT", "8080"))
APP_RELOAD = os.getenv("APP_RELOAD", "False").lower() in ("true", "1", "t")
