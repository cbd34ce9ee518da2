from typing import Optional

from fastapi import Header, HTTPException, Request

from filmmap.core.errors import ConfigurationError
from filmmap.mapsync.registry import MapViewRegistry
from filmmap.services.film_repository import FilmRepository
from filmmap.services.films import FilmService
from filmmap.services.geocoding import GeocodingGateway
from filmmap.services.identity import IdentityClient, UserSession
from filmmap.services.moderation import ModerationService
from filmmap.services.profiles import ProfileRepository


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=400, detail="Authorization header must be 'Bearer <token>'")
    return token.strip()


# Los servicios viven en app.state (los arma el lifespan de main.py)
def get_repository(request: Request) -> FilmRepository:
    return request.app.state.films


def get_profiles(request: Request) -> ProfileRepository:
    return request.app.state.profiles


def get_film_service(request: Request) -> FilmService:
    return request.app.state.film_service


def get_moderation(request: Request) -> ModerationService:
    return request.app.state.moderation


def get_geocoder(request: Request) -> GeocodingGateway:
    geocoder = request.app.state.geocoder
    if geocoder is None:
        raise ConfigurationError("Mapbox access token not configured")
    return geocoder


def get_identity(request: Request) -> IdentityClient:
    identity = request.app.state.identity
    if identity is None:
        raise ConfigurationError("Identity provider is not configured.")
    return identity


def get_registry(request: Request) -> MapViewRegistry:
    registry = request.app.state.registry
    if registry is None:
        raise ConfigurationError("Map views need both geocoding and identity configuration.")
    return registry


async def optional_session(request: Request, authorization: Optional[str] = Header(None)) -> Optional[UserSession]:
    token = bearer_token(authorization)
    if token is None:
        return None
    return await get_identity(request).get_session(token)


async def current_session(request: Request, authorization: Optional[str] = Header(None)) -> UserSession:
    token = bearer_token(authorization)
    # Sin header: la misma respuesta que un token vencido
    return await get_identity(request).get_session(token)
