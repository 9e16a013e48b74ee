# CREATE FILE: services/pricing_service/pricing.py

from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, List, Optional
import json
import os

from utils.logging import get_logger, redact_street
from .distance import DistanceResolver, create_distance_resolver

CENTS = Decimal('0.01')

DEFAULT_CONFIG = {
    "pricing": {
        "head_count_thresholds": [25, 50, 75, 100],
        "food_cost_thresholds": [300, 600, 900, 1200],
        "bands": [
            {
                "name": "Standard",
                "max_miles": 10,
                "with_tip": [35.00, 45.00, 55.00, 65.00],
                "without_tip": [42.50, 52.50, 62.50, 72.50],
                "percentage_with_tip": 9.0,
                "percentage_without_tip": 10.0
            },
            {
                "name": "Over 10 Miles",
                "max_miles": 30,
                "with_tip": [71.59, 90.00, 110.00, 130.00],
                "without_tip": [85.00, 105.00, 125.00, 145.00],
                "percentage_with_tip": 10.0,
                "percentage_without_tip": 11.0
            },
            {
                "name": "Over 30 Miles",
                "max_miles": None,
                "with_tip": [75.00, 95.00, 115.00, 135.00],
                "without_tip": [90.00, 110.00, 130.00, 150.00],
                "percentage_with_tip": 11.0,
                "percentage_without_tip": 12.0
            }
        ]
    },
    "distance": {
        "api_timeout_seconds": 5,
        "same_city_miles": 8,
        "default_miles": 25,
        "meters_per_mile": 1609.34,
        "use_redis_cache": True,
        "cache_ttl_seconds": 86400,
        "city_pairs": {}
    }
}


def load_config(config_path: str = None) -> Dict[str, Any]:
    """Load service configuration from JSON file"""
    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), '../../config/defaults.json')

    try:
        with open(config_path, 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        return DEFAULT_CONFIG


@dataclass
class PricingRequest:
    """Delivery quote input; head count and food cost are validated upstream"""
    pickup_address: str
    dropoff_address: str
    head_count: int
    food_cost: float
    include_tip: bool = True


@dataclass
class PricingResult:
    delivery_price: Decimal
    tier: str
    tip_included: bool
    calculation: str
    distance_miles: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deliveryPrice": float(self.delivery_price),
            "tier": self.tier,
            "breakdown": {
                "tipIncluded": self.tip_included,
                "calculation": self.calculation
            }
        }


@dataclass
class DistanceBand:
    name: str
    max_miles: Optional[float]
    with_tip: List[Decimal]
    without_tip: List[Decimal]
    percentage_with_tip: Decimal
    percentage_without_tip: Decimal

    @classmethod
    def from_config(cls, band: Dict[str, Any]) -> "DistanceBand":
        return cls(
            name=band["name"],
            max_miles=band.get("max_miles"),
            with_tip=[Decimal(str(fee)) for fee in band["with_tip"]],
            without_tip=[Decimal(str(fee)) for fee in band["without_tip"]],
            percentage_with_tip=Decimal(str(band["percentage_with_tip"])),
            percentage_without_tip=Decimal(str(band["percentage_without_tip"]))
        )

    def contains(self, distance_miles: float) -> bool:
        return self.max_miles is None or distance_miles <= self.max_miles


class PricingEngine:
    """Tiered catering delivery pricing using exact decimal arithmetic"""

    def __init__(self, config_path: str = None, distance_resolver: DistanceResolver = None,
                 config: Dict[str, Any] = None):
        self.config = config or load_config(config_path)
        self.logger = get_logger("pricing_engine")

        pricing = self.config["pricing"]
        self.head_count_thresholds = list(pricing["head_count_thresholds"])
        self.food_cost_thresholds = [Decimal(str(t)) for t in pricing["food_cost_thresholds"]]
        self.bands = [DistanceBand.from_config(band) for band in pricing["bands"]]
        self.top_tier = len(self.head_count_thresholds) + 1

        self.distance_resolver = distance_resolver or create_distance_resolver(self.config.get("distance", {}))

    def head_count_tier(self, head_count: int) -> int:
        """1-based tier for a head count: <25, 25-49, 50-74, 75-99, 100+"""
        return bisect_right(self.head_count_thresholds, head_count) + 1

    def food_cost_tier(self, food_cost: float) -> int:
        """1-based tier for a food cost: <300, 300-599, 600-899, 900-1199, 1200+"""
        return bisect_right(self.food_cost_thresholds, Decimal(str(food_cost))) + 1

    def select_tier(self, head_count: int, food_cost: float) -> int:
        # Either dimension can push an order into a more complex delivery
        return max(self.head_count_tier(head_count), self.food_cost_tier(food_cost))

    def select_band(self, distance_miles: float) -> DistanceBand:
        for band in self.bands:
            if band.contains(distance_miles):
                return band
        return self.bands[-1]

    def price_for_distance(self, distance_miles: float, head_count: int, food_cost: float,
                           include_tip: bool = True) -> PricingResult:
        """Price an order once the distance is known"""
        band = self.select_band(distance_miles)
        tier = self.select_tier(head_count, food_cost)
        tip_label = "with tip" if include_tip else "without tip"

        if tier >= self.top_tier:
            percentage = band.percentage_with_tip if include_tip else band.percentage_without_tip
            food = Decimal(str(food_cost))
            price = (food * percentage / Decimal('100')).quantize(CENTS, rounding=ROUND_HALF_UP)
            calculation = (
                f"{percentage.quantize(Decimal('0.1'))}% of food cost "
                f"(${food.quantize(CENTS, rounding=ROUND_HALF_UP)}) {tip_label}"
            )
        else:
            fees = band.with_tip if include_tip else band.without_tip
            price = fees[tier - 1].quantize(CENTS, rounding=ROUND_HALF_UP)
            calculation = f"Flat rate for tier {tier} {tip_label}: ${price}"

        calculation = f"{calculation} ({band.name}, {distance_miles} miles)"

        return PricingResult(
            delivery_price=max(price, Decimal('0.00')),
            tier=f"{band.name} - Tier {tier}",
            tip_included=include_tip,
            calculation=calculation,
            distance_miles=distance_miles
        )

    def calculate_delivery_price(self, request: PricingRequest) -> PricingResult:
        """Resolve the distance, then apply band and tier pricing"""
        with self.logger.operation_context("resolve_distance",
                                           pickup=redact_street(request.pickup_address),
                                           dropoff=redact_street(request.dropoff_address)):
            distance_miles = self.distance_resolver.resolve_distance(
                request.pickup_address, request.dropoff_address
            )

        result = self.price_for_distance(
            distance_miles,
            request.head_count,
            request.food_cost,
            include_tip=request.include_tip
        )

        self.logger.info("Delivery price calculated",
                         pickup=redact_street(request.pickup_address),
                         dropoff=redact_street(request.dropoff_address),
                         distance_miles=distance_miles,
                         tier=result.tier,
                         delivery_price=float(result.delivery_price))

        return result
