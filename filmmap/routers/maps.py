import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, Response, UploadFile
from fastapi.responses import HTMLResponse
from filmmap.mapsync.registry import MapViewRegistry
from filmmap.schemas.geocoding import Place
from filmmap.schemas.map import (
    ClickRequest,
    ClickResult,
    CreateViewRequest,
    DraftFields,
    MapViewState,
    PendingLocation,
    SubmitResult,
)
from filmmap.services.identity import UserSession
from filmmap.services.submission import SUCCESS_MESSAGE
from filmmap.routers.deps import current_session, get_registry, optional_session

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/map", tags=["Map"])


@router.post("/views", response_model=MapViewState, status_code=201)
async def create_view(
    payload: Optional[CreateViewRequest] = None,
    session: Optional[UserSession] = Depends(optional_session),
    registry: MapViewRegistry = Depends(get_registry),
):
    read_only = payload.read_only if payload else None
    view = await registry.create(session, read_only=read_only)
    return view.snapshot()


@router.get("/views/{view_id}", response_model=MapViewState)
async def get_view(view_id: str, registry: MapViewRegistry = Depends(get_registry)):
    return registry.get(view_id).snapshot()


@router.get("/views/{view_id}/data")
async def view_data(view_id: str, registry: MapViewRegistry = Depends(get_registry)):
    """FeatureCollection tal como esta escrita en el source del mapa."""
    return registry.get(view_id).engine.rendered_data()


@router.put("/views/{view_id}/session", response_model=MapViewState)
async def sign_in(
    view_id: str,
    session: UserSession = Depends(current_session),
    registry: MapViewRegistry = Depends(get_registry),
):
    view = registry.get(view_id)
    view.auth_state.sign_in(session)
    return view.snapshot()


@router.delete("/views/{view_id}/session", response_model=MapViewState)
async def sign_out(view_id: str, registry: MapViewRegistry = Depends(get_registry)):
    view = registry.get(view_id)
    view.auth_state.sign_out()
    return view.snapshot()


@router.post("/views/{view_id}/click", response_model=ClickResult)
async def click(view_id: str, payload: ClickRequest, registry: MapViewRegistry = Depends(get_registry)):
    return await registry.get(view_id).engine.handle_click(payload.lng, payload.lat)


@router.post("/views/{view_id}/pending/confirm", response_model=PendingLocation)
async def confirm_pending(view_id: str, registry: MapViewRegistry = Depends(get_registry)):
    return registry.get(view_id).engine.confirm_pending()


@router.delete("/views/{view_id}/pending", status_code=204)
async def cancel_pending(view_id: str, registry: MapViewRegistry = Depends(get_registry)):
    registry.get(view_id).engine.cancel_pending()
    return Response(status_code=204)


@router.post("/views/{view_id}/fly", response_model=MapViewState)
async def fly_to(view_id: str, place: Place, registry: MapViewRegistry = Depends(get_registry)):
    """Centra el mapa en un resultado de busqueda."""
    view = registry.get(view_id)
    view.engine.fly_to(place)
    return view.snapshot()


@router.put("/views/{view_id}/draft", response_model=DraftFields)
async def update_draft(view_id: str, fields: DraftFields, registry: MapViewRegistry = Depends(get_registry)):
    return registry.get(view_id).workflow.update_draft(fields)


@router.put("/views/{view_id}/image", status_code=204)
async def attach_image(view_id: str, file: UploadFile = File(...), registry: MapViewRegistry = Depends(get_registry)):
    view = registry.get(view_id)
    data = await file.read()
    view.workflow.attach_image(data, file.content_type)
    logger.debug("Imagen adjunta | view=%s bytes=%d", view_id, len(data))
    return Response(status_code=204)


@router.delete("/views/{view_id}/image", status_code=204)
async def clear_image(view_id: str, registry: MapViewRegistry = Depends(get_registry)):
    registry.get(view_id).workflow.clear_image()
    return Response(status_code=204)


@router.post("/views/{view_id}/submit", response_model=SubmitResult, status_code=201)
async def submit(view_id: str, registry: MapViewRegistry = Depends(get_registry)):
    film = await registry.get(view_id).workflow.submit()
    return SubmitResult(film=film, message=SUCCESS_MESSAGE)


@router.delete("/views/{view_id}", status_code=204)
async def close_view(view_id: str, registry: MapViewRegistry = Depends(get_registry)):
    registry.close(view_id)
    return Response(status_code=204)


@router.get("/viewer", response_class=HTMLResponse)
def viewer():
    """
    Visor minimo (Leaflet por CDN) contra los endpoints de /map/views.
    El token, si hay, se pasa como ?token=... y se reenvia como Bearer.
    """
    html = """
    <html><head><meta charset="utf-8"><title>Film Map</title>
    <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css"/>
    <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"></script>
    <style>body{margin:0;font-family:sans-serif} #map{height:100vh} #status{position:absolute;top:8px;right:8px;
    z-index:1000;background:#222;color:#fff;padding:6px 10px;border-radius:6px}</style>
    </head><body>
    <div id="map"></div><div id="status">loading...</div>
    <script>
    const token = new URLSearchParams(location.search).get("token");
    const headers = {"Content-Type": "application/json"};
    if (token) headers["Authorization"] = "Bearer " + token;
    const map = L.map("map").setView([20, -40], 2);
    L.tileLayer("https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png", {maxZoom: 18}).addTo(map);
    const films = L.layerGroup().addTo(map);
    let viewId = null, pending = null;

    function status(text) { document.getElementById("status").textContent = text; }

    async function call(method, path, body) {
      const r = await fetch("/map/views" + path, {method, headers, body: body ? JSON.stringify(body) : undefined});
      const data = r.status === 204 ? null : await r.json();
      if (!r.ok) throw new Error(data && data.detail ? data.detail : r.status);
      return data;
    }

    async function reload() {
      const data = await call("GET", "/" + viewId + "/data");
      films.clearLayers();
      for (const f of data.features) {
        const [lng, lat] = f.geometry.coordinates;
        L.circleMarker([lat, lng], {radius: 8, color: "#fff", weight: 1, fillColor: "#ff69b4", fillOpacity: 1})
          .bindPopup("<b>" + f.properties.title + "</b><br/>" + f.properties.location + " (" + f.properties.year + ")")
          .addTo(films);
      }
      status(data.features.length + " films");
    }

    map.on("click", async (e) => {
      try {
        const res = await call("POST", "/" + viewId + "/click", {lng: e.latlng.lng, lat: e.latlng.lat});
        if (res.kind === "cluster") map.setView([res.center[1], res.center[0]], res.zoom);
        if (res.kind === "pending") {
          if (pending) map.removeLayer(pending);
          pending = L.marker([res.center[1], res.center[0]]).addTo(map)
            .bindPopup("Add a film here?<br/><small>" + res.pending.label + "</small>").openPopup();
        }
      } catch (err) { status(err.message); }
    });

    call("POST", "", {}).then((view) => { viewId = view.id; return reload(); })
      .catch((err) => status(err.message));
    </script>
    </body></html>
    """
    return HTMLResponse(html)
