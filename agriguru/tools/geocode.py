# agriguru/tools/geocode.py
import logging
import time
from typing import Optional

import httpx

log = logging.getLogger("agriguru.geocode")

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"

def t(): return time.perf_counter()


async def geocode_text(client: httpx.AsyncClient, q: str) -> Optional[tuple[float, float]]:
    """Forward-geocode a place name (restricted to India) to (lat, lon), or None."""
    start = t()
    params = {"q": q, "format": "json", "limit": 1, "countrycodes": "in"}
    headers = {
        "User-Agent": "AgriGuru/1.0 (contact: support@agriguru.example)",
        "Accept-Language": "en-IN"
    }
    r = await client.get(NOMINATIM_URL, params=params, headers=headers)
    r.raise_for_status()
    arr = r.json()
    result = None if not arr else (float(arr[0]["lat"]), float(arr[0]["lon"]))
    log.info("⏱️  Geocoding '%s': %dms -> %s", q, round((t() - start) * 1000), result)
    return result
