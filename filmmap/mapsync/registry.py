import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from filmmap.core.errors import NotFoundError
from filmmap.core.settings import Settings
from filmmap.mapsync.engine import MapSyncEngine, RetryPolicy
from filmmap.mapsync.widget import InMemoryMapWidget, MapWidget
from filmmap.schemas.map import MapViewState
from filmmap.services.film_repository import FilmRepository
from filmmap.services.geocoding import GeocodingGateway
from filmmap.services.identity import AuthState, IdentityClient, UserSession
from filmmap.services.submission import SubmissionWorkflow

logger = logging.getLogger(__name__)


@dataclass
class MapView:
    id: str
    engine: MapSyncEngine
    workflow: SubmissionWorkflow
    auth_state: AuthState

    def snapshot(self) -> MapViewState:
        engine = self.engine
        camera = engine.widget.camera() if isinstance(engine.widget, InMemoryMapWidget) else {}
        return MapViewState(
            id=self.id,
            state=engine.state,
            read_only=engine.read_only,
            camera=camera,
            feature_count=engine.feature_count(),
            pending=engine.pending,
            draft=self.workflow.draft,
            submitting=self.workflow.submitting,
            selected_film_id=engine.selected_film.id if engine.selected_film else None,
        )


class MapViewRegistry:
    """
    Una vista de mapa por cliente: cada una con su engine, su widget y su
    borrador. Las mas viejas se desmontan al superar MAP_MAX_VIEWS.
    """

    def __init__(
        self,
        settings: Settings,
        geocoder: GeocodingGateway,
        repository: FilmRepository,
        identity: IdentityClient,
        widget_factory: Optional[Callable[[], MapWidget]] = None,
    ):
        self.settings = settings
        self.geocoder = geocoder
        self.repository = repository
        self.identity = identity
        self.widget_factory = widget_factory or self._default_widget
        self.retry = RetryPolicy(
            base_delay=settings.MAP_RETRY_BASE_DELAY_S,
            max_delay=settings.MAP_RETRY_MAX_DELAY_S,
            max_attempts=settings.MAP_RETRY_MAX_ATTEMPTS,
        )
        self.views: Dict[str, MapView] = {}

    def _default_widget(self) -> MapWidget:
        return InMemoryMapWidget(self.settings.MAP_STYLE_URL, auto_load_delay=0)

    async def create(self, session: Optional[UserSession], read_only: Optional[bool] = None) -> MapView:
        while len(self.views) >= self.settings.MAP_MAX_VIEWS:
            oldest = next(iter(self.views))
            logger.info("Vista %s desalojada (limite %d)", oldest, self.settings.MAP_MAX_VIEWS)
            self.close(oldest)

        auth_state = AuthState(session)
        engine = MapSyncEngine(
            widget_factory=self.widget_factory,
            geocoder=self.geocoder,
            read_only=read_only,
            auth_state=auth_state,
            retry=self.retry,
        )
        workflow = SubmissionWorkflow(
            engine=engine,
            repository=self.repository,
            identity=self.identity,
            auth_state=auth_state,
            max_image_bytes=self.settings.MAX_IMAGE_SIZE_BYTES,
        )
        view = MapView(id=str(uuid.uuid4()), engine=engine, workflow=workflow, auth_state=auth_state)
        self.views[view.id] = view

        try:
            await engine.start()
            films = await asyncio.to_thread(self.repository.list_approved)
            outcome = await engine.set_films(films)
        except Exception:
            logger.warning("Vista %s descartada: fallo al arrancar", view.id)
            self.close(view.id)
            raise
        logger.info("Vista creada | id=%s films=%d outcome=%s", view.id, len(films), outcome.value)
        return view

    def get(self, view_id: str) -> MapView:
        view = self.views.get(view_id)
        if view is None:
            raise NotFoundError("Map view not found. Please reload the map.")
        return view

    def close(self, view_id: str) -> None:
        view = self.views.pop(view_id, None)
        if view is not None:
            view.engine.teardown()

    def close_all(self) -> None:
        for view_id in list(self.views):
            self.close(view_id)
