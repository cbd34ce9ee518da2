from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict
from filmmap.geo import Coordinates
from filmmap.schemas.films import Film


class MapState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    STYLE_LOADING = "style_loading"
    READY = "ready"
    UPDATING = "updating"
    LAYERS_MISSING = "layers_missing"
    FAILED = "failed"
    TORN_DOWN = "torn_down"


class UpdateOutcome(str, Enum):
    APPLIED = "applied"          # dataset reemplazado en el source
    SUPERSEDED = "superseded"    # otra actualizacion mas nueva lo reemplazo
    DEFERRED = "deferred"        # se agotaron los reintentos; se aplica al quedar READY
    STOPPED = "stopped"          # la vista fue desmontada


class PendingLocation(BaseModel):
    token: int
    coordinates: Coordinates
    label: Optional[str] = None
    confirmed: bool = False


class ClickKind(str, Enum):
    CLUSTER = "cluster"
    DETAIL = "detail"
    PENDING = "pending"
    IGNORED = "ignored"


class ClickRequest(BaseModel):
    lng: float
    lat: float


class ClickResult(BaseModel):
    kind: ClickKind
    film: Optional[Film] = None
    center: Optional[List[float]] = None
    zoom: Optional[float] = None
    pending: Optional[PendingLocation] = None


class DraftFields(BaseModel):
    title: str = ""
    director: str = ""
    location: str = ""
    year: Any = Field("", description="Texto del formulario; se valida al enviar")
    description: str = ""


class MapViewState(BaseModel):
    id: str
    state: MapState
    read_only: bool
    camera: Dict[str, Any]
    feature_count: int
    pending: Optional[PendingLocation] = None
    draft: DraftFields
    submitting: bool = False
    selected_film_id: Optional[str] = None


class CreateViewRequest(BaseModel):
    read_only: Optional[bool] = Field(None, description="null = solo lectura si no hay sesion")


class SubmitResult(BaseModel):
    film: Film
    message: str
