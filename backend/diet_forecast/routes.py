"""FastAPI routes for the election forecast."""
import logging
from typing import Optional

from fastapi import APIRouter, Body, HTTPException, Query, Request

from .errors import ConfigurationError, ExternalServiceError
from .forecast_service import ForecastService
from .models import PredictionRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/forecast", tags=["Election Forecast"])


def get_service(request: Request) -> ForecastService:
    service = getattr(request.app.state, "forecast_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Forecast service not initialized")
    return service


@router.get("/predict")
async def predict(
    request: Request,
    region_id: Optional[int] = Query(None, alias="regionId"),
    refresh: bool = Query(False),
    fast: bool = Query(False),
):
    """Prediction envelope for national scope or one region. Always a valid structure."""
    service = get_service(request)
    req = PredictionRequest(region_id=region_id, force_refresh=refresh, fast_mode=fast)
    try:
        prediction = await service.get_prediction(req)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        logger.error("Prediction refresh misconfigured: %s", e)
        raise HTTPException(status_code=503, detail=str(e))
    return prediction.to_wire()


@router.post("/refresh-all")
async def refresh_all(request: Request, payload: dict = Body(default={})):
    """Refresh national + every region. Reports success/failure counts."""
    service = get_service(request)
    try:
        summary = await service.refresh_all(
            fast_mode=bool(payload.get("fast", True)),
            include_national=bool(payload.get("includeNational", True)),
            concurrency=payload.get("concurrency"),
            region_ids=payload.get("regionIds"),
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return summary


@router.post("/national/rebuild")
async def rebuild_national(request: Request):
    """Aggregate cached region predictions into the national slot."""
    service = get_service(request)
    prediction = await service.rebuild_national()
    if prediction is None:
        return {
            "prediction": None,
            "reason": f"At least {service.limits.min_regions_for_aggregate} region predictions are required",
        }
    return {"prediction": prediction.to_wire()}


@router.get("/cache/status")
async def cache_status(request: Request):
    return await get_service(request).cache_status()


@router.delete("/cache/news")
async def clear_news_cache(request: Request):
    cleared = await get_service(request).clear_news_cache()
    return {"cleared": cleared}


@router.delete("/cache/regions")
async def clear_region_cache(request: Request):
    cleared = await get_service(request).clear_region_cache()
    return {"cleared": cleared}


@router.post("/news/{region_id}")
async def fetch_region_news(request: Request, region_id: int):
    """Force a news-only refresh for one region."""
    service = get_service(request)
    try:
        result = await service.fetch_region_news(region_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ExternalServiceError as e:
        logger.error("News refresh failed for region %s: %s", region_id, e)
        raise HTTPException(status_code=502, detail=str(e))
    return {
        "regionId": region_id,
        "content": result.content,
        "sources": result.sources,
        "cachedAt": result.cached_at,
    }


@router.get("/regions")
async def list_regions(request: Request):
    """Reference regions with district counts, plus party display metadata."""
    reference = get_service(request).reference
    return {
        "regions": [
            {"id": r.id, "name": r.name, "districts": r.district_count, "block": r.block}
            for r in reference.regions
        ],
        "parties": [
            {"name": p.name, "shortName": p.short_name, "color": p.color}
            for p in reference.parties
        ],
        "totalSeats": reference.total_seats,
    }
