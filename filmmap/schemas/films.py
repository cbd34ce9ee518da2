from datetime import date, datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any
from filmmap.core.errors import FilmValidationError
from filmmap.geo import Coordinates, normalize_coordinates

FIRST_FILM_YEAR = 1895


def _normalize(value: Any) -> Any:
    # WKT, GeoJSON, {lng, lat} o WKB -> Coordinates
    if value is None:
        return None
    return normalize_coordinates(value)


class FilmStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Film(BaseModel):
    id: str
    title: str
    director: Optional[str] = None
    location: str
    year: int
    description: str = ""
    coordinates: Coordinates
    image_url: Optional[str] = None
    status: FilmStatus = FilmStatus.PENDING
    rejection_reason: Optional[str] = None
    user_id: str
    created_at: Optional[datetime] = None
    submitted_by: Optional[str] = Field(None, description="Nombre visible del autor (solo en listados de moderacion)")

    normalize_coords = field_validator("coordinates", mode="before")(_normalize)


class FilmDraft(BaseModel):
    title: str
    director: Optional[str] = None
    location: str
    year: int
    description: str
    coordinates: Coordinates
    image_url: Optional[str] = None
    user_id: str

    normalize_coords = field_validator("coordinates", mode="before")(_normalize)


class FilmPatch(BaseModel):
    title: Optional[str] = None
    director: Optional[str] = None
    location: Optional[str] = None
    year: Optional[Any] = Field(None, description="Entero o texto; se valida con parse_year")
    description: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    image_url: Optional[str] = None

    normalize_coords = field_validator("coordinates", mode="before")(_normalize)

    @field_validator("title", "location", "description")
    @classmethod
    def _required(cls, value, info):
        # Omitir el campo lo deja como esta; null o texto vacio no
        if value is None or (info.field_name != "description" and not value.strip()):
            raise FilmValidationError(f"{info.field_name.capitalize()} is required.")
        return value


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, description="null = cancelar el rechazo")


class FilmList(BaseModel):
    items: List[Film]


class StatusCounts(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0


def parse_year(raw: Any, *, default_current: bool = True) -> int:
    """
    Acepta int o texto. Vacio -> año actual (si default_current).
    Fuera de [1895, año actual] o no numerico -> FilmValidationError.
    """
    current = date.today().year
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if default_current:
            return current
        raise FilmValidationError("Year is required.")
    if isinstance(raw, bool):
        raise FilmValidationError("Year must be a whole number, e.g. 1994.")
    if isinstance(raw, int):
        year = raw
    else:
        try:
            year = int(str(raw).strip(), 10)
        except ValueError:
            raise FilmValidationError("Year must be a whole number, e.g. 1994.")
    if not FIRST_FILM_YEAR <= year <= current:
        raise FilmValidationError(f"Year must be between {FIRST_FILM_YEAR} and {current}.")
    return year
