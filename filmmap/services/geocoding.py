import logging
import math
from typing import List, Optional, Tuple
from urllib.parse import quote

import httpx

from filmmap.core.errors import ConfigurationError, FilmValidationError, GeocodingError
from filmmap.core.settings import Settings
from filmmap.geo import fallback_label, in_bounds
from filmmap.schemas.geocoding import Place

logger = logging.getLogger(__name__)


def parse_coordinate_query(query: str) -> Optional[Tuple[float, float]]:
    """
    "lat,lng" -> (lat, lng); cualquier otra cosa -> None.
    Heuristica de GET /geocode?query=: un nombre de lugar que parezca dos
    numeros separados por coma se trata como coordenadas.
    """
    parts = query.split(",")
    if len(parts) != 2:
        return None
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    return lat, lng


class GeocodingGateway:
    """
    Proxy al geocoder de Mapbox. El token viaja como query param y nunca se
    loguea ni aparece en las respuestas.
    """

    FORWARD_LIMIT = 5

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        token = settings.geocoding_token
        if not token:
            raise ConfigurationError(
                "Geocoding access token is missing. Set MAPBOX_ACCESS_TOKEN or GEOCODING_ACCESS_TOKEN."
            )
        self._token = token
        self.base_url = settings.GEOCODING_BASE_URL.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=settings.GEOCODING_TIMEOUT_S)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, query: str, limit: int) -> dict:
        url = f"{self.base_url}/{quote(query, safe='')}.json"
        logger.debug("Geocoding -> %s?access_token=REDACTED&limit=%d", url, limit)
        try:
            response = await self._client.get(url, params={"access_token": self._token, "limit": limit})
        except httpx.HTTPError as e:
            # str(e) puede incluir la URL con el token
            logger.error("Geocoding: error de red (%s)", type(e).__name__)
            raise GeocodingError() from None
        if not response.is_success:
            logger.error("Geocoding: el proveedor respondio %s", response.status_code)
            raise GeocodingError(f"Geocoding service returned status {response.status_code}")
        try:
            return response.json()
        except ValueError:
            logger.error("Geocoding: respuesta no es JSON")
            raise GeocodingError() from None

    @staticmethod
    def _places(data: dict) -> List[Place]:
        places = []
        for feature in data.get("features") or []:
            center = feature.get("center")
            if not isinstance(center, (list, tuple)) or len(center) != 2:
                continue
            try:
                lng, lat = float(center[0]), float(center[1])
            except (TypeError, ValueError):
                continue
            name = feature.get("place_name") or feature.get("text") or fallback_label(lng, lat)
            places.append(Place(place_name=name, center=[lng, lat]))
        return places

    async def forward_geocode(self, query: str) -> List[Place]:
        if not query or not query.strip():
            raise FilmValidationError("Query parameter is required")
        data = await self._request(query.strip(), self.FORWARD_LIMIT)
        places = self._places(data)
        logger.debug("Geocoding forward %r -> %d resultados", query, len(places))
        return places

    async def reverse_geocode(self, lng: float, lat: float) -> str:
        """
        Nunca falla: coordenadas fuera de rango, errores remotos o ningun
        resultado devuelven "Location at {lat}, {lng}".
        """
        if not (math.isfinite(lng) and math.isfinite(lat)) or not in_bounds(lng, lat):
            logger.warning("Reverse geocoding con coordenadas invalidas: %s, %s", lng, lat)
            return fallback_label(lng, lat)
        try:
            data = await self._request(f"{lng:.6f},{lat:.6f}", 1)
        except GeocodingError:
            return fallback_label(lng, lat)
        places = self._places(data)
        if places:
            return places[0].place_name
        return fallback_label(lng, lat)

    async def geocode(self, query: str) -> List[Place]:
        """Punto de entrada sobrecargado: "lat,lng" -> reverse, texto -> forward."""
        if not query or not query.strip():
            raise FilmValidationError("Query parameter is required")
        pair = parse_coordinate_query(query)
        if pair is None:
            return await self.forward_geocode(query)
        lat, lng = pair
        name = await self.reverse_geocode(lng, lat)
        return [Place(place_name=name, center=[lng, lat])]
