# CREATE FILE: services/driver_stats_service/app.py

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Depends, Query
from typing import Optional
from datetime import datetime
import json
import os

from utils.logging import get_logger
from .db import Database
from .stats import (
    DriverStatsAggregator, DriverStatsQuery, StatsPeriod, InvalidStatsQueryError,
    create_driver_stats_aggregator
)

logger = get_logger("driver_stats_service")


# Load configuration
def load_config():
    config_path = os.path.join(os.path.dirname(__file__), '../../config/defaults.json')
    try:
        with open(config_path, 'r') as f:
            return json.load(f).get("driver_stats", {})
    except FileNotFoundError:
        return {"timezone": "America/Los_Angeles", "top_performers_limit": 5}


config = load_config()
database = Database()
aggregator = create_driver_stats_aggregator(database, config)


def get_aggregator() -> DriverStatsAggregator:
    return aggregator


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Pool is created lazily on the first query; close it on shutdown
    await database.close()


app = FastAPI(title="Driver Stats Service", version="1.0.0", lifespan=lifespan)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"ok": True}


@app.get("/drivers/stats/summary")
async def drivers_stats_summary(
    period: StatsPeriod = Query(StatsPeriod.TODAY),
    include_inactive: bool = Query(False),
    stats: DriverStatsAggregator = Depends(get_aggregator)
):
    """Fleet-wide roll-up for the admin dashboard"""
    with logger.request_context(endpoint="/drivers/stats/summary"):
        try:
            summary = await stats.get_all_drivers_stats_summary(period, include_inactive)
            return summary.to_dict()
        except InvalidStatsQueryError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Driver stats summary failed: {str(e)}")


@app.get("/drivers/{driver_id}/stats")
async def driver_stats(
    driver_id: str,
    period: StatsPeriod = Query(StatsPeriod.TODAY),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    stats: DriverStatsAggregator = Depends(get_aggregator)
):
    """
    Aggregated statistics for one driver.

    An explicit start_date and end_date pair overrides the period window.
    Trends are included for week and month only.
    """
    with logger.request_context(endpoint="/drivers/{driver_id}/stats"):
        try:
            report = await stats.get_driver_stats(DriverStatsQuery(
                driver_id=driver_id,
                period=period,
                start_date=start_date,
                end_date=end_date
            ))
            return report.to_dict()
        except InvalidStatsQueryError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Driver stats failed: {str(e)}")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8002"))
    uvicorn.run(app, host="0.0.0.0", port=port)
