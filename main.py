# main.py
from __future__ import annotations

import asyncio
import functools
import logging
import time

from fastapi import FastAPI, Request, Response, HTTPException, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from errors import ConfigurationError, NoDistrictFound
from logging_config import setup_logging
from models import ItineraryRequest, ItineraryResponse
from request_context import new_request_id, get_request_id
from services.itinerary_engine import ItineraryEngine
from services.llm_service import OpenAIGenerator
from services.memory_store import load_seed
from services.places_service import GooglePlacesClient
from services.taxonomy import load_taxonomy

# Initialize logging BEFORE creating the app
setup_logging(settings.log_level)
log = logging.getLogger("app")

app = FastAPI(
    title="District Itinerary Engine",
    version="1.0.0",
    description="Daily itineraries for a random district: quota planning, AI discovery, verification and rewards",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=["*"],
    expose_headers=settings.CORS_EXPOSE_HEADERS,
)

@app.on_event("startup")
async def on_startup():
    log.info("App starting", extra={
        "request_id": get_request_id(),
        "model": settings.OPENAI_MODEL,
        "env": settings.APP_ENV,
        "debug": settings.DEBUG,
        "verification": settings.verification_enabled,
    })

@app.middleware("http")
async def request_logging_mw(request: Request, call_next):
    rid = new_request_id(request.headers.get("x-request-id"))
    start = time.perf_counter()
    response: Response | None = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.perf_counter() - start) * 1000)
        if response is not None:
            response.headers["X-Request-Id"] = rid
        log.info(
            f"{request.method} {request.url.path} -> {getattr(response, 'status_code', '?')} in {dur_ms}ms",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "status": getattr(response, "status_code", None),
                "duration_ms": dur_ms,
            },
        )

# --- error mapping ---
@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    log.warning("Configuration error: %s", exc, extra={"request_id": get_request_id()})
    return JSONResponse(status_code=400, content={"detail": str(exc)})

@app.exception_handler(NoDistrictFound)
async def no_district_handler(request: Request, exc: NoDistrictFound):
    log.info("No district found", extra={
        "request_id": get_request_id(),
        "region_id": exc.region_id,
        "country_id": exc.country_id,
    })
    return JSONResponse(status_code=404, content={"detail": str(exc)})

@functools.lru_cache(maxsize=1)
def get_engine() -> ItineraryEngine:
    """Process-wide engine over the seeded in-memory stores."""
    stores = load_seed(settings.SEED_PATH)
    places = None
    if settings.GOOGLE_MAPS_API_KEY:
        places = GooglePlacesClient(
            settings.GOOGLE_MAPS_API_KEY,
            language=settings.PLACES_LANGUAGE,
            timeout=settings.PLACES_TIMEOUT_S,
        )
    return ItineraryEngine(
        taxonomy=load_taxonomy(settings.TAXONOMY_PATH),
        settings=settings,
        locations=stores.locations,
        cache=stores.cache,
        generator=OpenAIGenerator(settings.OPENAI_API_KEY, settings.OPENAI_MODEL),
        collections=stores.collections,
        inventory=stores.inventory,
        promotions=stores.promotions,
        places=places,
    )

@app.get("/health")
def health():
    return {
        "status": "ok",
        "openai_key_loaded": bool(settings.OPENAI_API_KEY),
        "maps_key_loaded": bool(settings.GOOGLE_MAPS_API_KEY),
        "model": settings.OPENAI_MODEL,
    }

@app.post("/itinerary", response_model=ItineraryResponse)
async def create_itinerary(req: ItineraryRequest, engine: ItineraryEngine = Depends(get_engine)) -> ItineraryResponse:
    log.info("Itinerary request received", extra={
        "request_id": get_request_id(),
        "region_id": req.region_id,
        "country_id": req.country_id,
        "item_count": req.item_count,
        "language": req.language,
        "authenticated": bool(req.user_id),
    })
    try:
        return await asyncio.wait_for(engine.generate(req), timeout=settings.REQUEST_DEADLINE_S)
    except asyncio.TimeoutError:
        log.error("Itinerary generation exceeded deadline", extra={
            "request_id": get_request_id(),
            "deadline_s": settings.REQUEST_DEADLINE_S,
        })
        raise HTTPException(status_code=504, detail="Itinerary generation timed out")
    except (ConfigurationError, NoDistrictFound):
        raise
    except Exception as e:
        log.exception("Itinerary generation failed", extra={"request_id": get_request_id()})
        raise HTTPException(status_code=500, detail="Itinerary generation failed") from e

# Production entry point
if __name__ == "__main__":
    import uvicorn

    log.info(f"Starting server on {settings.HOST}:{settings.PORT}")

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=1,
        access_log=True,
        log_level="info" if settings.APP_ENV == "production" else "debug",
    )
