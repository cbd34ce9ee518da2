"""
Flujo de alta de una pelicula desde el mapa:

1. ubicacion confirmada en el mapa (MapSyncEngine.confirm_pending)
2. borrador + imagen opcional
3. submit(): revalida la sesion, sube la imagen, crea el registro (pending),
   lo agrega al mapa con las coordenadas que conoce el cliente, limpia el
   borrador y el marker temporal.
"""
import asyncio
import logging
from typing import Optional, Tuple

from filmmap.core.errors import (
    AssetStoreError,
    ConflictError,
    FilmMapError,
    MissingLocationError,
    SessionExpiredError,
)
from filmmap.geo import fallback_label
from filmmap.mapsync.engine import MapSyncEngine
from filmmap.schemas.films import Film, FilmDraft, parse_year
from filmmap.schemas.map import DraftFields, PendingLocation
from filmmap.services.asset_store import AssetStore
from filmmap.services.film_repository import FilmRepository
from filmmap.services.identity import AuthState, IdentityClient
from filmmap.services.image_service import ImageService

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Film added successfully! It will be visible to others after review."


class SubmissionWorkflow:
    def __init__(
        self,
        engine: MapSyncEngine,
        repository: FilmRepository,
        identity: IdentityClient,
        auth_state: AuthState,
        max_image_bytes: int,
    ):
        self.engine = engine
        self.repository = repository
        self.identity = identity
        self.auth_state = auth_state
        self.max_image_bytes = max_image_bytes
        self.draft = DraftFields()
        self.image: Optional[Tuple[bytes, str]] = None
        self.submitting = False

    # ---------------------------
    # Borrador
    # ---------------------------
    def update_draft(self, fields: DraftFields) -> DraftFields:
        self.draft = self.draft.model_copy(update=fields.model_dump(exclude_unset=True))
        return self.draft

    def attach_image(self, data: bytes, content_type: Optional[str]) -> None:
        # Tipo y tamaño se rechazan ya, sin esperar al submit
        ImageService.check_declared(content_type, len(data), self.max_image_bytes)
        self.image = (data, content_type)

    def clear_image(self) -> None:
        self.image = None

    def reset(self) -> None:
        self.draft = DraftFields()
        self.image = None

    def build_draft(self, user_id: str, pending: PendingLocation) -> FilmDraft:
        coords = pending.coordinates
        return FilmDraft(
            title=self.draft.title.strip() or "Untitled Film",
            director=self.draft.director.strip() or None,
            location=self.draft.location.strip() or pending.label or fallback_label(coords.lng, coords.lat),
            year=parse_year(self.draft.year),
            description=self.draft.description.strip() or "No description provided",
            coordinates=coords,
            user_id=user_id,
        )

    # ---------------------------
    # Envio
    # ---------------------------
    def _check_preconditions(self) -> None:
        pending = self.engine.pending
        if pending is None or not pending.confirmed:
            raise MissingLocationError()
        if self.auth_state.session is None:
            raise SessionExpiredError("You must be logged in to add a film.")
        if self.submitting:
            raise ConflictError("A submission is already in progress.")

    def _still_submittable(self, pending: PendingLocation) -> None:
        # Tras cada await: la ubicacion confirmada y la sesion siguen siendo las mismas
        if self.auth_state.session is None:
            raise SessionExpiredError("You must be logged in to add a film.")
        if not self._is_current(pending):
            raise MissingLocationError()

    def _is_current(self, pending: PendingLocation) -> bool:
        current = self.engine.pending
        return current is not None and current.token == pending.token and current.confirmed

    async def submit(self) -> Film:
        self._check_preconditions()
        # Valida el año antes de cualquier llamada remota
        parse_year(self.draft.year)
        pending = self.engine.pending
        coords = pending.coordinates

        self.submitting = True
        image_url = None
        try:
            # La sesion se revalida justo antes de escribir
            session = await self.identity.get_session(self.auth_state.session.access_token)
            self._still_submittable(pending)

            if self.image is not None:
                data, content_type = self.image
                image_url = await asyncio.to_thread(self.repository.upload_image, data, content_type)
                self._still_submittable(pending)

            # Mismo token: puede traer la etiqueta que llego despues de confirmar
            draft = self.build_draft(session.user_id, self.engine.pending)
            draft.image_url = image_url
            created = await asyncio.to_thread(self.repository.create, draft)
        except FilmMapError as e:
            logger.warning("Alta de pelicula fallida (%s): %s", e.kind, e.message)
            if image_url:
                await self._discard_image(image_url)
            raise
        except Exception as e:
            logger.exception("Error inesperado al agregar la pelicula")
            if image_url:
                await self._discard_image(image_url)
            raise FilmMapError("Failed to add film: unknown error. Please try again.") from e
        finally:
            self.submitting = False

        # El registro devuelto lleva las coordenadas que el cliente ya conoce
        film = created.model_copy(update={"coordinates": coords})
        if self.engine.alive:
            await self.engine.merge_film(film)
            if self._is_current(pending):
                self.engine.dismiss_pending()
        self.reset()
        logger.info("Pelicula enviada a revision | id=%s", film.id)
        return film

    async def _discard_image(self, image_url: str) -> None:
        try:
            await asyncio.to_thread(self.repository.assets.delete, AssetStore.filename_from_url(image_url))
        except AssetStoreError:
            logger.warning("No pude borrar la imagen huerfana %s", image_url, exc_info=True)
