"""ASGI entry point: `uvicorn searchsynth.main:app`."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from searchsynth.api.deps import get_controller
from searchsynth.api.routes import sessions
from searchsynth.config import settings
from searchsynth.errors import ConfigurationError
from searchsynth.services.logger import configure_logging, logger

PROVIDER_KEYS = {
    "cerebras": "cerebras_api_key",
    "groq": "groq_api_key",
    "openai": "openai_api_key",
    "brave": "brave_api_key",
    "tavily": "tavily_api_key",
    "jina": "jina_api_key",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings)
    missing = [name for name, attr in PROVIDER_KEYS.items() if not getattr(settings, attr, "")]
    if missing:
        logger.warning(f"No credentials for: {', '.join(missing)}; their fallbacks will be used")
    logger.info("SearchSynth API ready")
    yield
    if get_controller.cache_info().currsize:
        await get_controller().gateway.aclose()
    logger.info("SearchSynth API stopped")


app = FastAPI(
    title="SearchSynth",
    description="Search, summarize and answer with cited sources, streamed over SSE",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(sessions.router)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "searchsynth"}
