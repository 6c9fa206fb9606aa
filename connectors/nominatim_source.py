import json
import logging
from http.client import HTTPException
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from errors import GeocodingError
from geo import valid_coordinates

logger = logging.getLogger("nominatim_source")


@dataclass
class ViewBox:
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float


@dataclass
class GeocodingResult:
    lat: float
    lng: float
    display_name: str
    place_id: int = 0
    type: str = ""
    category: str = ""
    importance: float = 0.0
    address: Dict[str, str] = field(default_factory=dict)
    boundingbox: List[str] = field(default_factory=list)


class NominatimSource:
    """
    Geocoding against the OpenStreetMap Nominatim API.
    Nominatim allows at most one request per second, so calls are
    serialized and spaced by ``rate_limit``. Responses are cached by URL.
    """

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        user_agent: str = "RoadWatch/1.0 (Navigation Demo)",
        rate_limit: float = 1.0,
        timeout: float = 10.0,
        cache_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.rate_limit = rate_limit
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._sleep = sleep

        self._request_lock = threading.Lock()
        self._last_request: Optional[float] = None
        self._cache: Dict[str, Tuple[float, object]] = {}  # url -> (fetched_at, payload)

    # --- Public API ---

    def search(
        self,
        query: str,
        limit: int = 5,
        country_code: str = "",
        language: str = "",
        viewbox: Optional[ViewBox] = None,
    ) -> List[GeocodingResult]:
        query = (query or "").strip()
        if not query:
            raise ValueError("query must not be empty")

        if limit <= 0:
            limit = 5
        limit = min(limit, 50)  # Nominatim hard cap

        params = {
            "format": "json",
            "q": query,
            "limit": str(limit),
            "addressdetails": "1",
        }
        if country_code:
            params["countrycodes"] = country_code
        if language:
            params["accept-language"] = language
        if viewbox is not None:
            params["viewbox"] = f"{viewbox.min_lng},{viewbox.min_lat},{viewbox.max_lng},{viewbox.max_lat}"
            params["bounded"] = "1"

        payload = self._fetch(f"{self.base_url}/search?{urlencode(params)}")
        if not isinstance(payload, list):
            raise GeocodingError("unexpected search payload")

        results = []
        for raw in payload:
            result = self._to_result(raw)
            if result is not None:
                results.append(result)
        return results

    def search_nearby(self, lat: float, lng: float, query: str, radius_km: float) -> List[GeocodingResult]:
        # 1 degree is roughly 111 km
        deg = radius_km / 111.0
        box = ViewBox(min_lat=lat - deg, min_lng=lng - deg, max_lat=lat + deg, max_lng=lng + deg)
        return self.search(query, limit=10, viewbox=box)

    def reverse(self, lat: float, lng: float) -> GeocodingResult:
        if not valid_coordinates(lat, lng):
            raise ValueError(f"invalid coordinates: lat={lat}, lng={lng}")

        params = {"format": "json", "lat": f"{lat:f}", "lon": f"{lng:f}", "addressdetails": "1"}
        payload = self._fetch(f"{self.base_url}/reverse?{urlencode(params)}")
        result = self._to_result(payload)
        if result is None:
            raise GeocodingError("no result for coordinates")
        return result

    # --- Internals ---

    def _to_result(self, raw) -> Optional[GeocodingResult]:
        if not isinstance(raw, dict):
            return None
        try:
            lat = float(raw["lat"])
            lng = float(raw["lon"])
        except (KeyError, TypeError, ValueError):
            return None
        address = raw.get("address") if isinstance(raw.get("address"), dict) else {}
        return GeocodingResult(
            lat=lat,
            lng=lng,
            display_name=raw.get("display_name", ""),
            place_id=int(raw.get("place_id") or 0),
            type=raw.get("type", ""),
            category=raw.get("class", raw.get("category", "")),
            importance=float(raw.get("importance") or 0.0),
            address=address,
            boundingbox=list(raw.get("boundingbox") or []),
        )

    def _wait_for_rate_limit(self):
        if self._last_request is None:
            return
        elapsed = self._clock() - self._last_request
        if elapsed < self.rate_limit:
            self._sleep(self.rate_limit - elapsed)

    def _purge_expired(self, now: float):
        expired = [url for url, (fetched_at, _) in self._cache.items() if now - fetched_at >= self.cache_ttl]
        for url in expired:
            del self._cache[url]

    def _fetch(self, url: str):
        with self._request_lock:
            now = self._clock()
            self._purge_expired(now)
            cached = self._cache.get(url)
            if cached is not None and now - cached[0] < self.cache_ttl:
                return cached[1]

            self._wait_for_rate_limit()
            req = Request(url)
            req.add_header("User-Agent", self.user_agent)
            req.add_header("Accept", "application/json")
            req.add_header("Accept-Language", "es,en")

            try:
                self._last_request = self._clock()
                with urlopen(req, timeout=self.timeout) as response:
                    if response.status != 200:
                        raise GeocodingError(f"Nominatim returned status {response.status}", status_code=response.status)
                    payload = json.loads(response.read().decode("utf-8"))
            except HTTPError as e:
                logger.warning("Nominatim HTTP Error: %s", e.code)
                raise GeocodingError(f"Nominatim HTTP error {e.code}", status_code=e.code) from e
            except URLError as e:
                logger.warning("Nominatim Connection Error: %s", e.reason)
                raise GeocodingError(f"Nominatim connection error: {e.reason}") from e
            except HTTPException as e:
                logger.warning("Nominatim Protocol Error: %r", e)
                raise GeocodingError(f"Nominatim protocol error: {e!r}") from e
            except OSError as e:
                # Timeouts and resets while reading the body
                logger.warning("Nominatim Socket Error: %r", e)
                raise GeocodingError(f"Nominatim socket error: {e!r}") from e
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning("Nominatim returned an undecodable body: %s", e)
                raise GeocodingError("Nominatim returned invalid JSON") from e

            self._cache[url] = (self._clock(), payload)
            return payload
