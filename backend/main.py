import os

from dotenv import load_dotenv

# Settings are read at import time, so .env must be loaded first
load_dotenv()

from fastapi.openapi.utils import get_openapi  # noqa: E402

from app.main import app  # noqa: E402

OPENAPI_TAGS = [
    {"name": "availability", "description": "Bookable start times per provider, service and day."},
    {"name": "bookings", "description": "Booking lifecycle: create, confirm, cancel, complete, no-show, reschedule."},
    {"name": "payments", "description": "Deposit and balance collection plus gateway webhooks."},
    {"name": "ops", "description": "Reconciliation job triggers for an external scheduler (X-Ops-Token)."},
]


def custom_openapi() -> dict:
    """Return OpenAPI schema with project metadata."""
    if app.openapi_schema:
        return app.openapi_schema
    app.openapi_schema = get_openapi(
        title="Beauty Booking API",
        version="1.0.0",
        description=(
            "Availability, booking lifecycle, deposits and reconciliation jobs "
            "for a multi-tenant beauty marketplace."
        ),
        routes=app.routes,
        tags=OPENAPI_TAGS,
    )
    return app.openapi_schema


app.openapi = custom_openapi

if __name__ == "__main__":
    import uvicorn

    reload = os.getenv("UVICORN_RELOAD", "0") == "1"
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=reload,
        # uvicorn ignores workers when reloading
        workers=1 if reload else int(os.getenv("UVICORN_WORKERS", "1")),
        timeout_keep_alive=int(os.getenv("UVICORN_KEEPALIVE", "65")),
    )
