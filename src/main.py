# src/main.py
import os
import uvicorn
from fastapi import FastAPI
from src.routers.platforms_router import router as platforms_router
from src.infrastructure.database import init_db
from src.middleware.logging import RequestIdMiddleware
from src.providers.registry import load_registry
import structlog

def configure_structlog():
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
    )

configure_structlog()
logger = structlog.get_logger()

app = FastAPI(title="Social Scheduler")

app.add_middleware(RequestIdMiddleware)

app.include_router(platforms_router)

@app.on_event("startup")
async def on_startup():
    # a platform enabled without credentials aborts startup
    app.state.registry = load_registry()
    await init_db()
    logger.info("app_startup", platforms=[p.value for p in app.state.registry.platforms()])

if __name__ == "__main__":
    uvicorn.run("src.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=True)
