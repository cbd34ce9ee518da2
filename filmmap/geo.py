"""
Par de coordenadas canonico {lng, lat} y normalizacion de las formas en que
la base de datos entrega un punto:

- objeto ya normalizado ({"lng": .., "lat": ..} o Coordinates)
- WKT / EWKT: "POINT(lng lat)", "SRID=4326;POINT(lng lat)"
- GeoJSON: {"type": "Point", "coordinates": [lng, lat]} (dict o texto)
- columnas escalares lng/lat en el registro (ver record_coordinates)

Lo que no se reconoce termina en el centinela (0, 0), que nunca se dibuja.
"""
import json
import logging
import math
import re
from typing import Any, Mapping

from geoalchemy2.elements import WKBElement
from geoalchemy2.shape import to_shape
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

POINT_RE = re.compile(r"POINT\s*\(\s*([^\s()]+)\s+([^\s()]+)\s*\)", re.IGNORECASE)


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lng: float
    lat: float

    def as_list(self) -> list[float]:
        return [self.lng, self.lat]


ORIGIN = Coordinates(lng=0.0, lat=0.0)


def _pair(lng: Any, lat: Any) -> Coordinates:
    try:
        lng_f, lat_f = float(lng), float(lat)
    except (TypeError, ValueError):
        return ORIGIN
    if not (math.isfinite(lng_f) and math.isfinite(lat_f)):
        return ORIGIN
    return Coordinates(lng=lng_f, lat=lat_f)


def normalize_coordinates(value: Any) -> Coordinates:
    if isinstance(value, Coordinates):
        return value

    if isinstance(value, Mapping):
        if "lng" in value and "lat" in value:
            return _pair(value["lng"], value["lat"])
        coords = value.get("coordinates")
        if isinstance(coords, (list, tuple)) and len(coords) >= 2:
            return _pair(coords[0], coords[1])
        return ORIGIN

    if isinstance(value, str):
        text = value.strip()
        m = POINT_RE.search(text)
        if m:
            return _pair(m.group(1), m.group(2))
        if text.startswith("{"):
            try:
                return normalize_coordinates(json.loads(text))
            except ValueError:
                logger.debug("normalize_coordinates: JSON invalido %r", text[:80])
        return ORIGIN

    if isinstance(value, WKBElement):
        try:
            pt = to_shape(value)
            return _pair(pt.x, pt.y)
        except Exception:
            logger.debug("normalize_coordinates: WKB ilegible", exc_info=True)
            return ORIGIN

    return ORIGIN


def record_coordinates(record: Mapping[str, Any]) -> Coordinates:
    """Coordenadas de un registro: columnas lng/lat si vienen, si no la columna coordinates."""
    if record.get("lng") is not None and record.get("lat") is not None:
        return _pair(record["lng"], record["lat"])
    return normalize_coordinates(record.get("coordinates"))


def in_bounds(lng: float, lat: float) -> bool:
    return -180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0


def is_renderable(coords: Coordinates | None) -> bool:
    if coords is None:
        return False
    if not (math.isfinite(coords.lng) and math.isfinite(coords.lat)):
        return False
    if coords.lng == 0 and coords.lat == 0:
        return False
    return in_bounds(coords.lng, coords.lat)


def to_wkt(coords: Coordinates) -> str:
    return f"POINT({coords.lng} {coords.lat})"


def fallback_label(lng: float, lat: float) -> str:
    return f"Location at {lat:.4f}, {lng:.4f}"
