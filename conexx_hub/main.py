from sqlalchemy import text

from conexx_hub.core.errors import HubError
from conexx_hub.core.observability import (
    http_exception_handler,
    hub_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from conexx_hub.core.config import settings
from conexx_hub.db.session import engine
from conexx_hub.routers import auth, billing, webhooks, weekly_fees

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Backend API for the Conexx Hub dashboard.\n\n"
        "Swagger quick test flow:\n"
        "1. Click **Authorize** and use your e-mail + password "
        "(OAuth token URL: `/auth/token`).\n"
        "2. Test protected endpoints (`/weekly-fees`, `/billing/subscription`)."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "User authentication."},
        {"name": "weekly-fees", "description": "Weekly revenue-share fees: calculation, charges, and manual overrides."},
        {"name": "billing", "description": "Asaas customers and plan subscriptions."},
        {"name": "webhooks", "description": "Asaas payment and subscription callbacks."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(HubError, hub_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:5173"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Vite and similar tooling pick dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(weekly_fees.router)
app.include_router(billing.router)
app.include_router(webhooks.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
