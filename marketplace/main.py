import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from marketplace.core.config import Settings, load_settings, validate_runtime_config
from marketplace.database import build_engine, build_session_factory, initialize_schema
from marketplace.routes import auth_routes, chat_routes, dashboard_routes, listing_routes
from marketplace.services.chat import ChatRelay
from marketplace.services.email_service import EmailService
from marketplace.utils.exceptions import MarketplaceException

logger = logging.getLogger(__name__)


def error_body(error: str, message: str, **extra) -> dict:
    return {
        'error': error,
        'message': message,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        **extra,
    }


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceException)
    async def marketplace_exception_handler(request: Request, exc: MarketplaceException):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f'{type(exc).__name__} [{request_id}]: {exc.message}')
        extra = {'reason': exc.reason} if hasattr(exc, 'reason') else {}
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(type(exc).__name__, exc.message, **extra),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f'Database error [{request_id}]: {exc}', exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error_body('ServiceUnavailable', 'Database unavailable. Verify DATABASE_URL and database credentials.'),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f'Unhandled exception [{request_id}]: {exc}', exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(
                'InternalServerError',
                'An internal error occurred',
                detail=f'Contact support with request ID: {request_id}',
            ),
        )


def create_app(settings: Settings | None = None, email_service=None) -> FastAPI:
    settings = settings or load_settings()
    validate_runtime_config(settings)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    engine = build_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            initialize_schema(engine)
        except SQLAlchemyError:
            logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
        logger.info('Marketplace API startup complete')
        yield
        engine.dispose()
        logger.info('Marketplace API shutdown complete')

    app = FastAPI(title='Campus Marketplace API', version='1.0.0', lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.email_service = email_service or EmailService(settings)
    app.state.chat_relay = ChatRelay()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    @app.middleware('http')
    async def log_requests(request: Request, call_next):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.info(f'Request [{request_id}]: {request.method} {request.url.path}')
        response = await call_next(request)
        logger.info(f'Response [{request_id}]: {response.status_code}')
        return response

    # Registered last so it runs first and the logger above sees the id.
    @app.middleware('http')
    async def add_request_id(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers['X-Request-ID'] = request_id
        return response

    register_exception_handlers(app)

    @app.get('/')
    def root():
        return {'status': 'Marketplace API Running'}

    @app.get('/health')
    def health():
        return {'status': 'healthy', 'chat_rooms': len(app.state.chat_relay.rooms)}

    app.include_router(auth_routes.router, prefix='/auth')
    app.include_router(listing_routes.router, prefix='/products')
    app.include_router(dashboard_routes.router)
    app.include_router(chat_routes.router)
    return app


app = create_app()


if __name__ == '__main__':
    import uvicorn

    uvicorn.run('marketplace.main:app', host='0.0.0.0', port=8000, reload=True)
