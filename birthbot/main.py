import logging
from datetime import UTC, datetime

from fastapi import Depends, FastAPI

from birthbot.api.applications import router as applications_router
from birthbot.api.auth import get_admin_auth
from birthbot.api.webhooks import router as webhooks_router
from birthbot.core.config import Settings, settings
from birthbot.middleware.correlation_id import CorrelationIdMiddleware, install_log_filter
from birthbot.services.errors import BotError
from birthbot.services.message_composer import get_composer
from birthbot.services.metrics import get_metrics
from birthbot.services.runtime import STORE_BACKEND_MEMORY, STORE_BACKEND_SQL, get_runtime
from birthbot.services.state_machine import validate_transition_table

logger = logging.getLogger(__name__)

app = FastAPI(title="HP Birth Certificate Bot")

app.add_middleware(CorrelationIdMiddleware)


def validate_settings(config: Settings) -> None:
    """
    Fail-fast configuration checks.

    Raises:
        BotError: CONFIGURATION listing every problem found
    """
    errors = []

    if not config.whatsapp_dry_run:
        if not config.whatsapp_access_token:
            errors.append("WHATSAPP_ACCESS_TOKEN is required when WHATSAPP_DRY_RUN is false.")
        if not config.whatsapp_phone_number_id:
            errors.append("WHATSAPP_PHONE_NUMBER_ID is required when WHATSAPP_DRY_RUN is false.")

    if config.store_backend not in (STORE_BACKEND_MEMORY, STORE_BACKEND_SQL):
        errors.append(
            f"STORE_BACKEND must be '{STORE_BACKEND_MEMORY}' or '{STORE_BACKEND_SQL}', "
            f"got '{config.store_backend}'."
        )

    if config.app_env == "production":
        if not config.admin_api_key:
            errors.append(
                "ADMIN_API_KEY is required in production. "
                "Set ADMIN_API_KEY environment variable with a strong random key."
            )
        if config.whatsapp_dry_run:
            errors.append("WHATSAPP_DRY_RUN must be false in production.")

    if errors:
        message = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        logger.error(message)
        raise BotError.configuration(message)


@app.on_event("startup")
async def startup_event():
    """Run startup checks and build the runtime."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s [%(correlation_id)s]: %(message)s",
    )
    install_log_filter(logging.getLogger().handlers)

    validate_settings(settings)
    validate_transition_table()
    get_composer()  # Loads copy and checks placeholders
    get_runtime()

    logger.info(
        "Startup: Configuration loaded - "
        f"Environment: {settings.app_env}, "
        f"Store: {settings.store_backend}, "
        f"WhatsApp dry-run: {settings.whatsapp_dry_run}, "
        f"OTP verification: {settings.feature_otp_verification_enabled}"
    )


@app.on_event("shutdown")
async def shutdown_event():
    await get_runtime().alerts.drain()


@app.get("/health")
def health():
    runtime = get_runtime()
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "sessions": len(runtime.sessions.list()),
        "applications": len(runtime.applications.get_all()),
        "features": {
            "otp_verification_enabled": settings.feature_otp_verification_enabled,
            "whatsapp_dry_run": settings.whatsapp_dry_run,
        },
    }


@app.get("/admin/metrics")
def metrics(_: bool = Depends(get_admin_auth)):
    return get_metrics()


app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
app.include_router(applications_router, tags=["applications"])
