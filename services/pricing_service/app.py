# CREATE FILE: services/pricing_service/app.py

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
import os

from utils.logging import get_logger
from .pricing import PricingEngine, PricingRequest
from .scheduling import calculate_pickup_time, is_delivery_time_available

app = FastAPI(title="Pricing Service", version="1.0.0")

logger = get_logger("pricing_service")

# Initialize pricing engine
pricing_engine = PricingEngine()
scheduling_config = pricing_engine.config.get("scheduling", {})


class DeliveryPriceRequest(BaseModel):
    pickup_address: str = Field(..., alias="pickupAddress", min_length=1)
    dropoff_address: str = Field(..., alias="dropoffAddress", min_length=1)
    head_count: int = Field(..., alias="headCount", ge=0)
    food_cost: float = Field(..., alias="foodCost", ge=0)
    include_tip: bool = Field(True, alias="includeTip")

    model_config = ConfigDict(populate_by_name=True)


class PriceBreakdown(BaseModel):
    tipIncluded: bool
    calculation: str


class DeliveryPriceResponse(BaseModel):
    deliveryPrice: float
    tier: str
    breakdown: PriceBreakdown


class DistanceRequest(BaseModel):
    pickup_address: str = Field(..., alias="pickupAddress", min_length=1)
    delivery_address: str = Field(..., alias="deliveryAddress", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class PickupTimeRequest(BaseModel):
    delivery_date: str = Field(..., alias="deliveryDate", description="YYYY-MM-DD in local time")
    delivery_time: str = Field(..., alias="deliveryTime", description="HH:MM in local time")
    buffer_minutes: Optional[int] = Field(None, alias="bufferMinutes", ge=0, le=480)

    model_config = ConfigDict(populate_by_name=True)


class AvailabilityRequest(BaseModel):
    delivery_date: str = Field(..., alias="deliveryDate")
    delivery_time: str = Field(..., alias="deliveryTime")

    model_config = ConfigDict(populate_by_name=True)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"ok": True}


@app.post("/price/delivery", response_model=DeliveryPriceResponse)
def calculate_delivery_price(request: DeliveryPriceRequest):
    """
    Quote a catering delivery.

    The distance band (Standard / Over 10 Miles / Over 30 Miles) and the
    higher of the head count and food cost tiers select the fee. Distance
    lookups never fail; unavailable geocoding falls back to estimates.
    """
    with logger.request_context(endpoint="/price/delivery", method="POST"):
        try:
            result = pricing_engine.calculate_delivery_price(PricingRequest(
                pickup_address=request.pickup_address,
                dropoff_address=request.dropoff_address,
                head_count=request.head_count,
                food_cost=request.food_cost,
                include_tip=request.include_tip
            ))
            return DeliveryPriceResponse(**result.to_dict())

        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid input: {str(e)}")
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Pricing calculation failed: {str(e)}")


@app.post("/distance")
def calculate_distance(request: DistanceRequest):
    """Resolve the mile distance between two addresses"""
    miles = pricing_engine.distance_resolver.resolve_distance(
        request.pickup_address, request.delivery_address
    )
    return {"distanceMiles": miles}


@app.post("/schedule/pickup-time")
async def pickup_time(request: PickupTimeRequest):
    buffer_minutes = request.buffer_minutes
    if buffer_minutes is None:
        buffer_minutes = scheduling_config.get("pickup_buffer_minutes", 45)

    try:
        pickup = calculate_pickup_time(
            request.delivery_date,
            request.delivery_time,
            buffer_minutes=buffer_minutes,
            tz=scheduling_config.get("timezone", "America/Los_Angeles")
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid input: {str(e)}")

    return {"pickupTime": pickup}


@app.post("/schedule/availability")
async def delivery_availability(request: AvailabilityRequest):
    try:
        available = is_delivery_time_available(
            request.delivery_date,
            request.delivery_time,
            tz=scheduling_config.get("timezone", "America/Los_Angeles"),
            min_lead_time_hours=scheduling_config.get("min_lead_time_hours", 2),
            business_hours_start=scheduling_config.get("business_hours_start", 7),
            business_hours_end=scheduling_config.get("business_hours_end", 22)
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid input: {str(e)}")

    return {"available": available}


@app.get("/config")
async def get_pricing_config():
    """Get current pricing configuration"""
    return pricing_engine.config.get("pricing", {})


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8001"))
    uvicorn.run(app, host="0.0.0.0", port=port)
