# Settings: load from .env at project root when the backend starts.
# Real environment variables always win over .env values.

import os
from pathlib import Path

_project_root = Path(__file__).resolve().parents[2]


def _load_dotenv() -> None:
    """Copy KEY=value lines from the first .env found into os.environ without overriding set variables."""
    for path in (_project_root / ".env", Path.cwd() / ".env"):
        if path.is_file():
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        k, _, v = line.partition("=")
                        v = v.strip().strip('"').strip("'")
                        os.environ.setdefault(k.strip(), v)
            break


_load_dotenv()

STATFIN_BASE_URL = (os.getenv(
    "STATFIN_BASE_URL",
    "https://statfin.stat.fi/PxWeb/api/v1/en/StatFin",
) or "").strip().rstrip("/")

MAP_GEOJSON_URL = (os.getenv(
    "MAP_GEOJSON_URL",
    "https://geo.stat.fi/geoserver/wfs?service=WFS&version=2.0.0&request=GetFeature"
    "&typeName=tilastointialueet:kunta4500k&outputFormat=json&srsName=EPSG:4326",
) or "").strip()

STATFIN_TIMEOUT_SECONDS = float(os.getenv("STATFIN_TIMEOUT_SECONDS", "20") or "20")
STATFIN_RETRIES = int(os.getenv("STATFIN_RETRIES", "3") or "3")

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()

# Display name used in place of the API's "WHOLE COUNTRY" label.
COUNTRY_NAME = (os.getenv("COUNTRY_NAME", "Finland") or "Finland").strip()
