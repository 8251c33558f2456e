# src/deckchat/main.py
from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from deckchat.core.config import settings
from deckchat.core.logging import get_logger
from deckchat.core.metrics import MetricsMiddleware, metrics_app
from deckchat.core.observability import setup_otel
from deckchat.kernel.errors import ProblemDetails
from deckchat.memory import redis as redis_mem

from deckchat.agent.continuity import build_continuity
from deckchat.agent.turn import TurnExecutor
from deckchat.services.environments import EnvironmentManager, ReferenceFiles
from deckchat.services.sandbox.factory import build_provider
from deckchat.services.session_store import SessionStore

from deckchat.api.routes.chat import router as chat_router
from deckchat.api.routes.slides import router as slides_router

log = get_logger(__name__)

app = FastAPI(title="Deck Chat", version="1.0.0")

# ---- Middlewares (order matters) ----
app.add_middleware(MetricsMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Stream-Protocol"],
)

# Prometheus metrics
app.mount("/metrics", metrics_app)

# Telemetry
setup_otel(app)


@app.exception_handler(ProblemDetails)
async def problem_handler(request: Request, exc: ProblemDetails):
    return JSONResponse(exc.to_dict(), status_code=exc.status)


@app.exception_handler(Exception)
async def unhandled_handler(request: Request, exc: Exception):
    log.exception("unhandled error on %s", request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.get("/health")
async def health():
    return JSONResponse({"ok": True, "env": settings.ENV})


@app.get("/readyz")
async def readyz():
    ok = await redis_mem.ping()
    return JSONResponse({"ok": ok}, status_code=200 if ok else 503)


# ---- Routers ----
app.include_router(chat_router, tags=["chat"])
app.include_router(slides_router, tags=["slides"])


def build_executor() -> TurnExecutor:
    store = SessionStore(redis_mem.get_redis())
    environments = EnvironmentManager(
        store,
        build_provider(settings),
        ReferenceFiles.load(settings.RULES_PATH, settings.SAMPLE_PATH),
        vcpus=settings.SANDBOX_VCPUS,
        timeout_sec=settings.SANDBOX_TIMEOUT_SEC,
        runtime=settings.SANDBOX_RUNTIME,
        handle_ttl=settings.ENV_HANDLE_TTL_SEC,
        install_cmd=settings.AGENT_INSTALL_CMD,
    )
    return TurnExecutor(
        environments,
        build_continuity(settings, store),
        document_file=settings.DOCUMENT_FILENAME,
        agent_binary=settings.AGENT_BINARY,
        agent_bin_dir=settings.AGENT_BIN_DIR,
        api_key=settings.AGENT_API_KEY,
        api_key_env=settings.AGENT_API_KEY_ENV,
    )


# ---- Startup / shutdown ----
@app.on_event("startup")
async def on_startup():
    app.state.executor = build_executor()
    log.info(
        "deckchat ready provider=%s continuity=%s",
        settings.SANDBOX_PROVIDER,
        settings.CONTINUITY_MODE,
    )


@app.on_event("shutdown")
async def on_shutdown():
    executor = getattr(app.state, "executor", None)
    if executor is not None:
        await executor.environments.provider.aclose()
    await redis_mem.close()
