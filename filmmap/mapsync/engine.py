"""
MapSyncEngine: dueño unico de un widget de mapa.

Estados:

    UNINITIALIZED -> INITIALIZING -> STYLE_LOADING -> READY <-> UPDATING
                                                        |
                                    LAYERS_MISSING -> INITIALIZING (solo layers) -> READY

Mientras el estilo no termina de cargar, refresh() reintenta con backoff
exponencial acotado (RetryPolicy). Si se agotan los intentos el dataset queda
pendiente y se escribe en cuanto el widget dispara "load".
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from filmmap.core.errors import MissingLocationError, ServiceUnavailableError
from filmmap.geo import Coordinates, is_renderable
from filmmap.mapsync.widget import MapWidget, Marker, Popup
from filmmap.schemas.films import Film
from filmmap.schemas.geocoding import Place
from filmmap.schemas.map import (
    ClickKind,
    ClickResult,
    MapState,
    PendingLocation,
    UpdateOutcome,
)
from filmmap.services.geocoding import GeocodingGateway
from filmmap.services.identity import AuthEvent, AuthState, UserSession

logger = logging.getLogger(__name__)

SOURCE_ID = "films"
MARKER_COLOR = "#ff69b4"
SEARCH_ZOOM = 12

SOURCE_SPEC = {
    "type": "geojson",
    "data": {"type": "FeatureCollection", "features": []},
    "cluster": True,
    "clusterMaxZoom": 14,
    "clusterRadius": 50,
}

LAYERS = [
    {
        "id": "clusters",
        "type": "circle",
        "source": SOURCE_ID,
        "filter": ["has", "point_count"],
        "paint": {
            "circle-color": ["step", ["get", "point_count"], "#ff69b4", 10, "#da70d6", 30, "#9370db"],
            "circle-radius": ["step", ["get", "point_count"], 20, 10, 30, 30, 40],
        },
    },
    {
        "id": "cluster-count",
        "type": "symbol",
        "source": SOURCE_ID,
        "filter": ["has", "point_count"],
        "layout": {"text-field": "{point_count_abbreviated}", "text-size": 12},
        "paint": {"text-color": "#ffffff"},
    },
    {
        "id": "unclustered-point",
        "type": "circle",
        "source": SOURCE_ID,
        "filter": ["!", ["has", "point_count"]],
        "paint": {
            "circle-color": MARKER_COLOR,
            "circle-radius": 8,
            "circle-stroke-width": 1,
            "circle-stroke-color": "#fff",
        },
    },
]

CLICKABLE_LAYERS = ["clusters", "unclustered-point"]


@dataclass(frozen=True)
class RetryPolicy:
    base_delay: float = 0.5
    max_delay: float = 8.0
    max_attempts: int = 8

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


def feature_collection(films: Iterable[Film]) -> Dict:
    """Solo peliculas con coordenadas validas y distintas de (0, 0)."""
    features = []
    skipped = 0
    for film in films:
        if not is_renderable(film.coordinates):
            skipped += 1
            logger.warning("Pelicula %r con coordenadas invalidas: %s", film.title, film.coordinates)
            continue
        features.append({
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": film.coordinates.as_list()},
            "properties": {
                "id": film.id,
                "title": film.title,
                "director": film.director,
                "location": film.location,
                "year": film.year,
                "description": film.description,
                "image_url": film.image_url,
                "status": film.status.value,
            },
        })
    if skipped:
        logger.debug("feature_collection: %d validas, %d descartadas", len(features), skipped)
    return {"type": "FeatureCollection", "features": features}


class MapSyncEngine:
    def __init__(
        self,
        widget_factory: Callable[[], MapWidget],
        geocoder: GeocodingGateway,
        read_only: Optional[bool] = None,
        auth_state: Optional[AuthState] = None,
        retry: RetryPolicy = RetryPolicy(),
    ):
        self.widget_factory = widget_factory
        self.geocoder = geocoder
        self.retry = retry
        self.widget: Optional[MapWidget] = None
        self.state = MapState.UNINITIALIZED
        self.history: List[MapState] = [self.state]
        self.films: List[Film] = []
        self.selected_film: Optional[Film] = None
        self.pending: Optional[PendingLocation] = None

        # Si read_only viene explicito manda; si no, depende de la sesion
        self._explicit_read_only = read_only
        self.auth_state = auth_state or AuthState()
        self._unsubscribe = self.auth_state.subscribe(self._on_auth_event)

        self._alive = True
        self._generation = 0
        self.applied_generation = 0
        self._pending_token = 0
        self._marker: Optional[Marker] = None
        self._confirm_popup: Optional[Popup] = None
        self._detail_popup: Optional[Popup] = None

    # ---------------------------
    # Estado
    # ---------------------------
    def _set_state(self, state: MapState) -> None:
        if state != self.state:
            logger.debug("MapSync: %s -> %s", self.state.value, state.value)
            self.state = state
            self.history.append(state)

    @property
    def read_only(self) -> bool:
        if self._explicit_read_only is not None:
            return self._explicit_read_only
        return self.auth_state.session is None

    @property
    def alive(self) -> bool:
        return self._alive

    def _on_auth_event(self, event: AuthEvent, session: Optional[UserSession]) -> None:
        logger.debug("MapSync: evento %s -> read_only=%s", event.value, self.read_only)
        if self.read_only:
            self.cancel_pending()

    # ---------------------------
    # Inicializacion
    # ---------------------------
    async def start(self) -> None:
        if self.state != MapState.UNINITIALIZED:
            return
        self._set_state(MapState.INITIALIZING)
        try:
            self.widget = self.widget_factory()
        except Exception as e:
            self._set_state(MapState.FAILED)
            logger.exception("No pude crear el widget del mapa")
            raise ServiceUnavailableError("Failed to initialize map. Please refresh the page.") from e
        self.widget.on("load", self._on_style_load)
        self._set_state(MapState.STYLE_LOADING)
        if self.widget.is_style_loaded():
            self._on_style_load()

    def _on_style_load(self) -> None:
        if not self._alive or self.widget is None:
            return
        self._set_state(MapState.INITIALIZING)
        self.ensure_layers()
        self._set_state(MapState.READY)
        # Source recien creado (o recreado tras un cambio de estilo): se rellena siempre
        self._write(self._generation)

    def layers_present(self) -> bool:
        if self.widget is None:
            return False
        if self.widget.get_source(SOURCE_ID) is None:
            return False
        return all(self.widget.get_layer(layer["id"]) is not None for layer in LAYERS)

    def ensure_layers(self) -> None:
        """Idempotente: lo que ya existe no se vuelve a crear."""
        if self.widget is None:
            return
        if self.widget.get_source(SOURCE_ID) is None:
            self.widget.add_source(SOURCE_ID, dict(SOURCE_SPEC))
        for layer in LAYERS:
            if self.widget.get_layer(layer["id"]) is None:
                self.widget.add_layer(layer)

    def _ready_for_data(self) -> bool:
        if self.widget is None or self.state in (
            MapState.UNINITIALIZED, MapState.INITIALIZING, MapState.FAILED, MapState.TORN_DOWN,
        ):
            return False
        if not self.widget.is_style_loaded():
            self._set_state(MapState.STYLE_LOADING)
            return False
        if self.state == MapState.STYLE_LOADING:
            # El estilo cargo sin que llegara el evento (o antes de suscribirnos)
            self._set_state(MapState.INITIALIZING)
            self.ensure_layers()
            self._set_state(MapState.READY)
        elif not self.layers_present():
            # Un cambio de estilo se llevo source/layers: recrear solo eso
            self._set_state(MapState.LAYERS_MISSING)
            self._set_state(MapState.INITIALIZING)
            self.ensure_layers()
            self._set_state(MapState.READY)
        return True

    # ---------------------------
    # Datos
    # ---------------------------
    def _write(self, generation: int) -> None:
        source = self.widget.get_source(SOURCE_ID) if self.widget else None
        if source is None:
            logger.warning("MapSync: source %r no encontrado", SOURCE_ID)
            return
        self._set_state(MapState.UPDATING)
        data = feature_collection(self.films)
        source.set_data(data)
        self.applied_generation = generation
        self._set_state(MapState.READY)
        logger.debug("MapSync: %d features escritas (gen=%d)", len(data["features"]), generation)

    async def refresh(self) -> UpdateOutcome:
        """Reemplaza el dataset completo del source con self.films."""
        self._generation += 1
        generation = self._generation
        for attempt in range(self.retry.max_attempts):
            if not self._alive:
                return UpdateOutcome.STOPPED
            if generation != self._generation:
                return UpdateOutcome.SUPERSEDED
            if self._ready_for_data():
                self._write(generation)
                return UpdateOutcome.APPLIED
            delay = self.retry.delay(attempt)
            logger.debug("MapSync: mapa no listo, reintento %d en %.2fs", attempt + 1, delay)
            await asyncio.sleep(delay)
        if not self._alive:
            return UpdateOutcome.STOPPED
        if generation != self._generation:
            return UpdateOutcome.SUPERSEDED
        if self._ready_for_data():
            self._write(generation)
            return UpdateOutcome.APPLIED
        logger.warning("MapSync: mapa no listo tras %d intentos; datos pendientes", self.retry.max_attempts)
        return UpdateOutcome.DEFERRED

    async def set_films(self, films: Iterable[Film]) -> UpdateOutcome:
        self.films = list(films)
        return await self.refresh()

    async def merge_film(self, film: Film) -> UpdateOutcome:
        self.films = [f for f in self.films if f.id != film.id] + [film]
        return await self.refresh()

    def find_film(self, film_id) -> Optional[Film]:
        for film in self.films:
            if film.id == film_id:
                return film
        return None

    def feature_count(self) -> int:
        source = self.widget.get_source(SOURCE_ID) if self.widget else None
        if source is None:
            return 0
        return len(source.data.get("features", []))

    def rendered_data(self) -> Dict:
        source = self.widget.get_source(SOURCE_ID) if self.widget else None
        if source is None:
            return {"type": "FeatureCollection", "features": []}
        return source.data

    # ---------------------------
    # Interaccion
    # ---------------------------
    async def handle_click(self, lng: float, lat: float) -> ClickResult:
        if not self._alive or self.state not in (MapState.READY, MapState.UPDATING):
            return ClickResult(kind=ClickKind.IGNORED)

        features = self.widget.query_rendered_features((lng, lat), CLICKABLE_LAYERS)
        if features:
            return self._show_feature(features[0])

        # Superficie vacia: solo con edicion habilitada
        if self.read_only:
            return ClickResult(kind=ClickKind.IGNORED)
        return await self.begin_submission(lng, lat)

    def _show_feature(self, feature: Dict) -> ClickResult:
        props = feature.get("properties") or {}
        center = list(feature["geometry"]["coordinates"][:2])
        if "point_count" in props:
            source = self.widget.get_source(SOURCE_ID)
            zoom = source.get_cluster_expansion_zoom(props.get("cluster_id"), self.widget.zoom)
            self.widget.ease_to(tuple(center), zoom)
            return ClickResult(kind=ClickKind.CLUSTER, center=center, zoom=zoom)

        film = self.find_film(props.get("id"))
        self.selected_film = film
        if self._detail_popup is not None:
            self._detail_popup.remove()
        self._detail_popup = self.widget.add_popup(tuple(center), {
            "kind": "detail",
            "film_id": props.get("id"),
            "title": props.get("title"),
            "location": props.get("location"),
            "year": props.get("year"),
        })
        return ClickResult(kind=ClickKind.DETAIL, film=film, center=center)

    async def begin_submission(self, lng: float, lat: float) -> ClickResult:
        self.cancel_pending()
        self._pending_token += 1
        token = self._pending_token
        coords = Coordinates(lng=lng, lat=lat)

        self._marker = self.widget.add_marker((lng, lat), MARKER_COLOR)
        # Un click no abre el formulario: hace falta confirmar en el popup
        self._confirm_popup = self.widget.add_popup(
            (lng, lat), {"kind": "confirm", "label": "Add a film here?"}, close_on_click=False,
        )
        self._confirm_popup.on_close(lambda: self._on_confirm_popup_closed(token))
        self.pending = PendingLocation(token=token, coordinates=coords)

        label = await self.geocoder.reverse_geocode(lng, lat)
        # Mientras tanto pudo desmontarse la vista o elegirse otro punto
        if not self._alive or self.pending is None or self.pending.token != token:
            logger.debug("MapSync: etiqueta descartada para token=%d", token)
            return ClickResult(kind=ClickKind.IGNORED)
        self.pending = self.pending.model_copy(update={"label": label})
        return ClickResult(kind=ClickKind.PENDING, pending=self.pending, center=coords.as_list())

    def _on_confirm_popup_closed(self, token: int) -> None:
        # Cerrar el popup sin confirmar descarta el marker
        if self.pending is not None and self.pending.token == token and not self.pending.confirmed:
            self.pending = None
            if self._marker is not None:
                self._marker.remove()
                self._marker = None

    def confirm_pending(self) -> PendingLocation:
        if self.pending is None:
            raise MissingLocationError()
        self.pending = self.pending.model_copy(update={"confirmed": True})
        if self._confirm_popup is not None:
            popup, self._confirm_popup = self._confirm_popup, None
            popup.remove()
        return self.pending

    def cancel_pending(self) -> None:
        self.pending = None
        if self._confirm_popup is not None:
            popup, self._confirm_popup = self._confirm_popup, None
            popup.remove()
        if self._marker is not None:
            self._marker.remove()
            self._marker = None

    def dismiss_pending(self) -> None:
        self.cancel_pending()

    def fly_to(self, place: Place, zoom: float = SEARCH_ZOOM) -> None:
        if self.widget is None or not self._alive:
            return
        self.widget.fly_to((place.center[0], place.center[1]), zoom)

    # ---------------------------
    # Desmontaje
    # ---------------------------
    def teardown(self) -> None:
        if not self._alive:
            return
        self._alive = False
        self.cancel_pending()
        self._unsubscribe()
        if self.widget is not None:
            self.widget.remove()
        self._set_state(MapState.TORN_DOWN)
