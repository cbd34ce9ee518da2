"""
Contrato minimo del widget de mapa que usa MapSyncEngine, modelado sobre la
API de Mapbox GL (sources/layers/markers/popups/eventos), y una
implementacion en memoria que guarda el GeoJSON para que el viewer HTML lo
dibuje.
"""
import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

LngLat = Tuple[float, float]

EMPTY_COLLECTION = {"type": "FeatureCollection", "features": []}


class Marker:
    def __init__(self, lng_lat: LngLat, color: str, on_remove: Callable[["Marker"], None]):
        self.lng_lat = lng_lat
        self.color = color
        self.removed = False
        self._on_remove = on_remove

    def remove(self) -> None:
        if self.removed:
            return
        self.removed = True
        self._on_remove(self)


class Popup:
    def __init__(self, lng_lat: LngLat, content: Dict[str, Any], close_on_click: bool,
                 on_remove: Callable[["Popup"], None]):
        self.lng_lat = lng_lat
        self.content = content
        self.close_on_click = close_on_click
        self.removed = False
        self._on_remove = on_remove
        self._close_listeners: List[Callable[[], None]] = []

    def on_close(self, listener: Callable[[], None]) -> None:
        self._close_listeners.append(listener)

    def remove(self) -> None:
        if self.removed:
            return
        self.removed = True
        self._on_remove(self)
        for listener in list(self._close_listeners):
            listener()


class GeoJSONSource:
    def __init__(self, spec: Dict[str, Any]):
        self.spec = spec
        self.data: Dict[str, Any] = spec.get("data") or dict(EMPTY_COLLECTION)
        self.writes = 0

    def set_data(self, data: Dict[str, Any]) -> None:
        self.data = data
        self.writes += 1

    def get_cluster_expansion_zoom(self, cluster_id: Any, current_zoom: float) -> float:
        max_zoom = self.spec.get("clusterMaxZoom", 14)
        return min(current_zoom + 2, max_zoom + 1)


class MapWidget(ABC):
    """
    Lo que el motor necesita del widget. add_source/add_layer fallan si el id
    ya existe (como Mapbox), por eso el motor consulta antes de crear.
    """

    @abstractmethod
    def is_style_loaded(self) -> bool: ...

    @abstractmethod
    def on(self, event: str, handler: Callable[[], None]) -> None: ...

    @abstractmethod
    def get_source(self, source_id: str) -> Optional[GeoJSONSource]: ...

    @abstractmethod
    def add_source(self, source_id: str, spec: Dict[str, Any]) -> None: ...

    @abstractmethod
    def get_layer(self, layer_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def add_layer(self, spec: Dict[str, Any]) -> None: ...

    @abstractmethod
    def query_rendered_features(self, lng_lat: LngLat, layers: Sequence[str]) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def ease_to(self, center: LngLat, zoom: float) -> None: ...

    @abstractmethod
    def fly_to(self, center: LngLat, zoom: float) -> None: ...

    @abstractmethod
    def add_marker(self, lng_lat: LngLat, color: str) -> Marker: ...

    @abstractmethod
    def add_popup(self, lng_lat: LngLat, content: Dict[str, Any], close_on_click: bool = True) -> Popup: ...

    @abstractmethod
    def remove(self) -> None: ...


class InMemoryMapWidget(MapWidget):
    # Radio de un punto sin agrupar, en pixeles de pantalla
    POINT_RADIUS_PX = 8
    TILE_SIZE = 512

    def __init__(self, style_url: str, center: LngLat = (-40.0, 20.0), zoom: float = 1.5,
                 auto_load_delay: Optional[float] = None):
        self.style_url = style_url
        self.center = center
        self.zoom = zoom
        self.removed = False
        self._style_loaded = False
        self._handlers: Dict[str, List[Callable[[], None]]] = {}
        self.sources: Dict[str, GeoJSONSource] = {}
        self.layers: Dict[str, Dict[str, Any]] = {}
        self.markers: List[Marker] = []
        self.popups: List[Popup] = []
        if auto_load_delay is not None:
            # El estilo llega de forma asincrona, como el de Mapbox
            asyncio.get_running_loop().call_later(auto_load_delay, self.load_style)

    # ---------------------------
    # Ciclo de vida del estilo
    # ---------------------------
    def is_style_loaded(self) -> bool:
        return self._style_loaded and not self.removed

    def on(self, event: str, handler: Callable[[], None]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def _fire(self, event: str) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler()

    def load_style(self) -> None:
        if self.removed or self._style_loaded:
            return
        self._style_loaded = True
        logger.debug("Widget: estilo cargado (%s)", self.style_url)
        self._fire("load")

    def reload_style(self, style_url: Optional[str] = None) -> None:
        """Cambio de estilo: Mapbox descarta sources y layers y vuelve a cargar."""
        self.style_url = style_url or self.style_url
        self._style_loaded = False
        self.sources.clear()
        self.layers.clear()

    # ---------------------------
    # Sources / layers
    # ---------------------------
    def get_source(self, source_id: str) -> Optional[GeoJSONSource]:
        return self.sources.get(source_id)

    def add_source(self, source_id: str, spec: Dict[str, Any]) -> None:
        if source_id in self.sources:
            raise ValueError(f"There is already a source with ID \"{source_id}\".")
        self.sources[source_id] = GeoJSONSource(spec)

    def get_layer(self, layer_id: str) -> Optional[Dict[str, Any]]:
        return self.layers.get(layer_id)

    def add_layer(self, spec: Dict[str, Any]) -> None:
        layer_id = spec["id"]
        if layer_id in self.layers:
            raise ValueError(f"Layer with id \"{layer_id}\" already exists on this map.")
        if spec.get("source") not in self.sources:
            raise ValueError(f"Source \"{spec.get('source')}\" not found.")
        self.layers[layer_id] = spec

    @staticmethod
    def _is_cluster(feature: Dict[str, Any]) -> bool:
        return "point_count" in (feature.get("properties") or {})

    def query_rendered_features(self, lng_lat: LngLat, layers: Sequence[str]) -> List[Dict[str, Any]]:
        # Tolerancia en grados equivalente al radio del punto con el zoom actual
        tolerance = self.POINT_RADIUS_PX * 360.0 / (self.TILE_SIZE * 2 ** self.zoom)
        hits = []
        for layer_id in layers:
            layer = self.layers.get(layer_id)
            if layer is None or layer.get("type") != "circle":
                continue
            source = self.sources.get(layer["source"])
            if source is None:
                continue
            wants_clusters = layer_id == "clusters"
            for feature in source.data.get("features", []):
                if self._is_cluster(feature) != wants_clusters:
                    continue
                lng, lat = feature["geometry"]["coordinates"][:2]
                dist = math.hypot(lng - lng_lat[0], lat - lng_lat[1])
                if dist <= tolerance:
                    hits.append((dist, dict(feature, layer=layer_id)))
        hits.sort(key=lambda h: h[0])
        return [feature for _, feature in hits]

    # ---------------------------
    # Camara, markers y popups
    # ---------------------------
    def ease_to(self, center: LngLat, zoom: float) -> None:
        self.center, self.zoom = center, zoom

    def fly_to(self, center: LngLat, zoom: float) -> None:
        self.center, self.zoom = center, zoom

    def add_marker(self, lng_lat: LngLat, color: str) -> Marker:
        marker = Marker(lng_lat, color, self.markers.remove)
        self.markers.append(marker)
        return marker

    def add_popup(self, lng_lat: LngLat, content: Dict[str, Any], close_on_click: bool = True) -> Popup:
        popup = Popup(lng_lat, content, close_on_click, self.popups.remove)
        self.popups.append(popup)
        return popup

    def remove(self) -> None:
        self.removed = True
        for popup in list(self.popups):
            popup.remove()
        for marker in list(self.markers):
            marker.remove()
        self.sources.clear()
        self.layers.clear()
        self._handlers.clear()

    def camera(self) -> Dict[str, Any]:
        return {"center": list(self.center), "zoom": self.zoom}
