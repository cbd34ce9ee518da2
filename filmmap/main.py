import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request
from starlette.responses import Response
from filmmap.core.errors import ConfigurationError, FilmMapError
from filmmap.core.logging import configure_logging
from filmmap.core.settings import Settings, get_settings
from filmmap.db.init_db import init_db
from filmmap.db.session import SessionLocal
from filmmap.mapsync.registry import MapViewRegistry
from filmmap.middleware.request_context import RequestContextMiddleware
from filmmap.routers import films, geocoding, health, maps, moderation, profiles
from filmmap.services.asset_store import AssetStore
from filmmap.services.film_repository import FilmRepository
from filmmap.services.films import FilmService
from filmmap.services.geocoding import GeocodingGateway
from filmmap.services.identity import IdentityClient
from filmmap.services.moderation import ModerationService
from filmmap.services.profiles import ProfileRepository

# OpenTelemetry (opcional)
from opentelemetry import trace
from opentelemetry.trace import get_current_span
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

logger = logging.getLogger("filmmap")


def _remote_client(factory, settings: Settings, name: str):
    # Sin token el resto de la API sigue funcionando; los endpoints que lo
    # necesitan responden ConfigurationError
    try:
        return factory(settings)
    except ConfigurationError as e:
        logger.error("%s deshabilitado: %s", name, e.message)
        return None


def build_services(app: FastAPI, settings: Settings) -> None:
    assets = AssetStore(settings)
    film_repo = FilmRepository(SessionLocal, assets, settings.MAX_IMAGE_SIZE_BYTES)
    profile_repo = ProfileRepository(SessionLocal)
    geocoder = _remote_client(GeocodingGateway, settings, "Geocoding")
    identity = _remote_client(IdentityClient, settings, "Identity")

    app.state.settings = settings
    app.state.assets = assets
    app.state.films = film_repo
    app.state.profiles = profile_repo
    app.state.film_service = FilmService(film_repo, profile_repo)
    app.state.moderation = ModerationService(film_repo, profile_repo)
    app.state.geocoder = geocoder
    app.state.identity = identity
    app.state.registry = (
        MapViewRegistry(settings, geocoder, film_repo, identity) if geocoder and identity else None
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    # Init DB + PostGIS
    init_db()
    build_services(app, settings)
    logger.info("FilmMap listo")
    try:
        yield
    finally:
        if app.state.registry is not None:
            app.state.registry.close_all()
        if app.state.geocoder is not None:
            await app.state.geocoder.aclose()
        if app.state.identity is not None:
            await app.state.identity.aclose()
        logger.info("FilmMap detenido")


async def film_map_error_handler(request: Request, exc: FilmMapError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": exc.message})


async def add_trace_headers(request: Request, call_next):
    # Incluir trace-id en todas las respuestas (si OTEL está activo)
    response: Response = await call_next(request)
    span = get_current_span()
    if span and span.get_span_context().trace_id:
        trace_id = format(span.get_span_context().trace_id, '032x')
        response.headers["x-trace-id"] = trace_id
    return response


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="FilmMap API", lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(RequestContextMiddleware)
    app.middleware("http")(add_trace_headers)
    app.add_exception_handler(FilmMapError, film_map_error_handler)

    # Instrumentación OTEL si está habilitada
    if settings.ENABLE_OTEL:
        resource = Resource(attributes={"service.name": settings.OTEL_SERVICE_NAME})
        provider = TracerProvider(resource=resource)
        exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        FastAPIInstrumentor.instrument_app(app)
        logger.info("OpenTelemetry habilitado -> %s", settings.OTEL_EXPORTER_OTLP_ENDPOINT)
    else:
        logger.info("OpenTelemetry deshabilitado")

    # Routers
    app.include_router(films.router)
    app.include_router(moderation.router)
    app.include_router(geocoding.router)
    app.include_router(profiles.router)
    app.include_router(maps.router)
    app.include_router(health.router)
    return app


app = create_app()
