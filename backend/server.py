"""
TravelMundo Credits API

Run with: uvicorn server:app --host 0.0.0.0 --port 8080 (from backend/)
"""
from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging
from typing import Optional

from credit_ledger import __version__
from credit_ledger.credits_service import CreditsService
from credit_ledger.config import NEXT_CURSOR_HEADER
from credit_ledger.errors import CreditsError
from credit_ledger.routes import credits_router
from database import MongoDatastore
from routes.system import system_router
from utils.environment import Settings, load_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, datastore=None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Loaded settings, defaults to load_settings()
        datastore: Datastore adapter; when omitted a MongoDatastore is
            created from settings at startup and closed at shutdown
    """
    settings = settings or load_settings()
    owns_datastore = datastore is None

    app = FastAPI(title="TravelMundo Credits API", version=__version__)
    app.state.settings = settings
    app.state.datastore = datastore
    app.state.credits_service = CreditsService(datastore, settings) if datastore is not None else None

    api_router = APIRouter(prefix="/api")
    api_router.include_router(credits_router)
    api_router.include_router(system_router)
    app.include_router(api_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[NEXT_CURSOR_HEADER],
    )

    @app.exception_handler(CreditsError)
    async def credits_error_handler(request: Request, exc: CreditsError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.error_code} {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.error_code} {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.on_event("startup")
    async def startup():
        if not owns_datastore:
            return

        # Check database connection first - fail fast if database is unavailable
        store = MongoDatastore.from_settings(settings)
        db_ok, db_error = await store.ping()
        if not db_ok:
            logger.critical(f"Database connection failed on startup: {db_error}")
            raise RuntimeError(
                f"Cannot start application - database connection failed: {db_error}")

        app.state.datastore = store
        app.state.credits_service = CreditsService(store, settings)
        logger.info(f"TravelMundo Credits API {__version__} started ({settings.environment})")

    @app.on_event("shutdown")
    async def shutdown_db_client():
        if owns_datastore and app.state.datastore is not None:
            app.state.datastore.close()

    return app


app = create_app()
