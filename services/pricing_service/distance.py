# CREATE FILE: services/pricing_service/distance.py

import os
import re
import time
import json
import hashlib
import threading
from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta

import redis
import requests

from utils.logging import get_logger, redact_street


# Canonical city names the heuristic fallback understands
KNOWN_CITIES = [
    "San Francisco",
    "South San Francisco",
    "Oakland",
    "San Jose",
    "Berkeley",
    "Palo Alto",
    "Mountain View",
    "Sunnyvale",
    "Santa Clara",
    "Fremont",
    "Hayward",
    "San Mateo",
    "Redwood City",
    "Daly City",
    "Walnut Creek",
    "Marin County",
]

# Lowercase spelling -> canonical name
CITY_ALIASES = {
    "sf": "San Francisco",
    "s.f.": "San Francisco",
    "san fran": "San Francisco",
    "ssf": "South San Francisco",
    "marin": "Marin County",
    "sj": "San Jose",
}

_CITY_LOOKUP = {**{city.lower(): city for city in KNOWN_CITIES}, **CITY_ALIASES}

# Longest names first so "south san francisco" wins over "san francisco"
_KEYWORD_PATTERNS = [
    (re.compile(r'(?<![\w.])' + re.escape(name) + r'(?![\w])', re.IGNORECASE), city)
    for name, city in sorted(_CITY_LOOKUP.items(), key=lambda item: len(item[0]), reverse=True)
]


def _normalize_segment(segment: str) -> Optional[str]:
    return _CITY_LOOKUP.get(" ".join(segment.lower().split()))


def extract_city(address: str) -> str:
    """
    Pull a normalized city name out of a free-text address.

    Comma-separated segments are checked against the known cities and their
    abbreviations first, then the whole string is searched for a known name
    ("500 Market St, San Francisco CA 94105"). Failing both, an unknown second
    segment is returned in Title Case. Returns "" when nothing matches.
    """
    if not address:
        return ""

    segments = [part.strip() for part in address.split(",") if part.strip()]

    for segment in segments:
        city = _normalize_segment(segment)
        if city:
            return city

    for pattern, city in _KEYWORD_PATTERNS:
        if pattern.search(address):
            return city

    if len(segments) >= 2:
        return segments[1].title()

    return ""


class DistanceCache:
    """Cache for successful distance lookups with TTL"""

    def __init__(self, use_redis: bool = True, default_ttl: int = 86400):
        self.default_ttl = default_ttl
        self.logger = get_logger("distance_cache")
        self.local_cache = {}
        self.cache_stats = {"hits": 0, "misses": 0, "errors": 0}
        self._lock = threading.RLock()

        # Redis is only used when a URL is configured
        self.redis_client = None
        redis_url = os.getenv('REDIS_URL')
        if use_redis and redis_url:
            try:
                self.redis_client = redis.from_url(redis_url, decode_responses=True)
                self.redis_client.ping()
                self.logger.info("Connected to Redis cache")
            except redis.RedisError as e:
                self.logger.warning("Redis connection failed, using local cache", error=e)
                self.redis_client = None

    def _generate_cache_key(self, pickup_address: str, delivery_address: str) -> str:
        key_string = "|".join([
            " ".join(pickup_address.lower().split()),
            " ".join(delivery_address.lower().split()),
        ])
        return f"distance_miles:{hashlib.md5(key_string.encode()).hexdigest()}"

    def get(self, pickup_address: str, delivery_address: str) -> Optional[float]:
        cache_key = self._generate_cache_key(pickup_address, delivery_address)

        with self._lock:
            try:
                if self.redis_client:
                    cached_data = self.redis_client.get(cache_key)
                    if cached_data:
                        self.cache_stats["hits"] += 1
                        return float(json.loads(cached_data)["miles"])

                if cache_key in self.local_cache:
                    miles, expiry = self.local_cache[cache_key]
                    if datetime.now() < expiry:
                        self.cache_stats["hits"] += 1
                        return miles
                    del self.local_cache[cache_key]

                self.cache_stats["misses"] += 1
                return None

            except (redis.RedisError, ValueError, KeyError) as e:
                self.logger.error("Cache get error", error=e, cache_key=cache_key)
                self.cache_stats["errors"] += 1
                return None

    def set(self, pickup_address: str, delivery_address: str, miles: float, ttl: int = None):
        cache_key = self._generate_cache_key(pickup_address, delivery_address)
        ttl = ttl or self.default_ttl

        with self._lock:
            try:
                if self.redis_client:
                    payload = {"miles": miles, "calculated_at": datetime.now().isoformat()}
                    self.redis_client.setex(cache_key, ttl, json.dumps(payload))
                else:
                    expiry = datetime.now() + timedelta(seconds=ttl)
                    self.local_cache[cache_key] = (miles, expiry)

                    if len(self.local_cache) > 1000:
                        self._cleanup_local_cache()

            except redis.RedisError as e:
                self.logger.error("Cache set error", error=e, cache_key=cache_key)
                self.cache_stats["errors"] += 1

    def _cleanup_local_cache(self):
        now = datetime.now()
        expired_keys = [
            key for key, (_, expiry) in self.local_cache.items()
            if now >= expiry
        ]
        for key in expired_keys:
            del self.local_cache[key]

        self.logger.debug("Local cache cleanup", removed_entries=len(expired_keys))

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total_requests = self.cache_stats["hits"] + self.cache_stats["misses"]
            hit_rate = (self.cache_stats["hits"] / total_requests) if total_requests > 0 else 0

            return {
                "hits": self.cache_stats["hits"],
                "misses": self.cache_stats["misses"],
                "errors": self.cache_stats["errors"],
                "hit_rate": round(hit_rate, 3),
                "local_cache_size": len(self.local_cache),
                "redis_connected": self.redis_client is not None
            }


class BaseDistanceStrategy:
    """One link of the distance fallback chain: resolve to miles or decline with None"""

    def __init__(self, strategy_name: str):
        self.strategy_name = strategy_name
        self.logger = get_logger(f"distance_strategy_{strategy_name}")

    def resolve(self, pickup_address: str, delivery_address: str) -> Optional[float]:
        raise NotImplementedError


class GoogleMapsDistanceStrategy(BaseDistanceStrategy):
    """Google Maps Distance Matrix lookup on the raw address strings"""

    base_url = "https://maps.googleapis.com/maps/api"

    def __init__(self, api_key: str = None, cache: DistanceCache = None,
                 timeout: float = 5, meters_per_mile: float = 1609.34):
        super().__init__("google_maps")
        self.api_key = api_key
        self.cache = cache
        self.timeout = timeout
        self.meters_per_mile = meters_per_mile

    def _get_api_key(self) -> Optional[str]:
        return self.api_key or os.getenv("GOOGLE_MAPS_API_KEY")

    def resolve(self, pickup_address: str, delivery_address: str) -> Optional[float]:
        api_key = self._get_api_key()
        if not api_key:
            self.logger.debug("No Google Maps API key configured, declining")
            return None

        if self.cache:
            cached = self.cache.get(pickup_address, delivery_address)
            if cached is not None:
                return cached

        params = {
            'origins': pickup_address,
            'destinations': delivery_address,
            'units': 'imperial',
            'key': api_key
        }

        start_time = time.time()
        try:
            response = requests.get(
                f"{self.base_url}/distancematrix/json",
                params=params,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            self.logger.warning("Distance Matrix request failed, using fallback", error=e)
            return None
        api_duration = (time.time() - start_time) * 1000

        self.logger.api_call("google_maps", "/distancematrix/json",
                             duration_ms=api_duration,
                             status_code=response.status_code)

        if response.status_code != 200:
            return None

        try:
            data = response.json()
        except ValueError as e:
            self.logger.warning("Distance Matrix returned malformed JSON", error=e)
            return None

        if data.get('status') != 'OK':
            self.logger.warning("Distance Matrix request rejected", api_status=data.get('status'))
            return None

        rows = data.get('rows') or []
        elements = rows[0].get('elements') if rows else None
        if not elements:
            self.logger.warning("Distance Matrix returned no elements")
            return None

        element = elements[0]
        if element.get('status') != 'OK':
            self.logger.warning("Route calculation failed",
                                element_status=element.get('status'),
                                pickup=redact_street(pickup_address),
                                delivery=redact_street(delivery_address))
            return None

        try:
            meters = float(element['distance']['value'])
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning("Distance Matrix element has no distance", error=e)
            return None

        miles = round(meters / self.meters_per_mile, 2)

        if self.cache:
            self.cache.set(pickup_address, delivery_address, miles)

        return miles


class CityHeuristicStrategy(BaseDistanceStrategy):
    """Same-city short hop, otherwise a fixed city-pair table"""

    def __init__(self, same_city_miles: float = 8, city_pairs: Dict[str, float] = None):
        super().__init__("city_heuristic")
        self.same_city_miles = same_city_miles
        self.city_pairs = city_pairs or {}

    def resolve(self, pickup_address: str, delivery_address: str) -> Optional[float]:
        pickup_city = extract_city(pickup_address)
        delivery_city = extract_city(delivery_address)

        if pickup_city and pickup_city == delivery_city:
            return float(self.same_city_miles)

        # Table keys are lowercase while extract_city returns Title Case, so
        # cross-city lookups miss and fall through to the default estimate.
        pair_key = f"{pickup_city}-{delivery_city}"
        if pair_key in self.city_pairs:
            return float(self.city_pairs[pair_key])

        return None


class DefaultDistanceStrategy(BaseDistanceStrategy):
    """Constant long-hop estimate, never declines"""

    def __init__(self, default_miles: float = 25):
        super().__init__("default")
        self.default_miles = default_miles

    def resolve(self, pickup_address: str, delivery_address: str) -> Optional[float]:
        return float(self.default_miles)


class DistanceResolver:
    """Resolves a mile distance between two addresses through an ordered strategy chain"""

    def __init__(self, strategies: List[BaseDistanceStrategy] = None, default_miles: float = 25):
        self.strategies = strategies or [DefaultDistanceStrategy(default_miles)]
        self.default_miles = default_miles
        self.logger = get_logger("distance_resolver")
        self.request_stats = {}

    def _record(self, strategy_name: str, outcome: str):
        stats = self.request_stats.setdefault(strategy_name, {"resolved": 0, "declined": 0, "errors": 0})
        stats[outcome] += 1

    def resolve_distance(self, pickup_address: str, delivery_address: str) -> float:
        """Return the distance in miles; every failure degrades to a fallback value"""
        for strategy in self.strategies:
            try:
                miles = strategy.resolve(pickup_address, delivery_address)
            except Exception as e:
                self.logger.error(f"Distance strategy {strategy.strategy_name} failed", error=e)
                self._record(strategy.strategy_name, "errors")
                continue

            if miles is None:
                self._record(strategy.strategy_name, "declined")
                continue

            self._record(strategy.strategy_name, "resolved")
            self.logger.debug("Distance resolved",
                              strategy=strategy.strategy_name,
                              miles=miles)
            return max(0.0, float(miles))

        return float(self.default_miles)

    calculate_distance = resolve_distance

    def get_stats(self) -> Dict[str, Any]:
        return {
            "strategies": [strategy.strategy_name for strategy in self.strategies],
            "request_stats": self.request_stats
        }


def create_distance_resolver(config: Dict[str, Any] = None) -> DistanceResolver:
    """Build the standard chain: Google Maps -> city heuristic -> default"""
    config = config or {}

    cache = DistanceCache(
        use_redis=config.get("use_redis_cache", True),
        default_ttl=config.get("cache_ttl_seconds", 86400)
    )
    default_miles = config.get("default_miles", 25)

    strategies = [
        GoogleMapsDistanceStrategy(
            api_key=config.get("api_key"),
            cache=cache,
            timeout=config.get("api_timeout_seconds", 5),
            meters_per_mile=config.get("meters_per_mile", 1609.34)
        ),
        CityHeuristicStrategy(
            same_city_miles=config.get("same_city_miles", 8),
            city_pairs=config.get("city_pairs", {})
        ),
        DefaultDistanceStrategy(default_miles),
    ]

    return DistanceResolver(strategies, default_miles=default_miles)
