import logging
import uuid
from typing import Any, List, Mapping, Optional, Union

from geoalchemy2.shape import from_shape
from shapely.geometry import Point
from sqlalchemy import func, select, text
from sqlalchemy.orm import sessionmaker

from filmmap.core.errors import AssetStoreError, FilmValidationError, NotFoundError
from filmmap.db.errors import db_errors
from filmmap.db.models import Film as FilmRow, Profile as ProfileRow
from filmmap.geo import Coordinates, is_renderable, normalize_coordinates, record_coordinates
from filmmap.schemas.films import Film, FilmDraft, FilmPatch, FilmStatus, parse_year
from filmmap.services.asset_store import AssetStore
from filmmap.services.image_service import ImageService

logger = logging.getLogger(__name__)

# Columnas que update() acepta; el resto se ignora
UPDATABLE = {
    "title", "director", "location", "year", "description",
    "coordinates", "image_url", "status", "rejection_reason",
}


def point_for(coords: Coordinates):
    if not is_renderable(coords):
        raise FilmValidationError("The selected location is not valid. Please pick a point on the map again.")
    return from_shape(Point(coords.lng, coords.lat), srid=4326)


class FilmRepository:
    """
    CRUD sobre la tabla films. No aplica reglas de negocio (dueño, estado):
    eso lo hacen FilmService y ModerationService antes de llamar.
    """

    def __init__(self, session_factory: sessionmaker, assets: AssetStore, max_image_bytes: int):
        self.session_factory = session_factory
        self.assets = assets
        self.max_image_bytes = max_image_bytes

    @staticmethod
    def _to_film(row: FilmRow, coordinates: Any = None, submitted_by: Optional[str] = None) -> Film:
        return Film(
            id=row.id,
            title=row.title,
            director=row.director,
            location=row.location,
            year=row.year,
            description=row.description or "",
            coordinates=normalize_coordinates(coordinates if coordinates is not None else row.coordinates),
            image_url=row.image_url,
            status=FilmStatus(row.status),
            rejection_reason=row.rejection_reason,
            user_id=row.user_id,
            created_at=row.created_at,
            submitted_by=submitted_by,
        )

    # ---------------------------
    # Lecturas
    # ---------------------------
    def list_approved(self) -> List[Film]:
        # La funcion del servidor ya entrega lng/lat escalares
        with db_errors("load films"), self.session_factory() as db:
            records = db.execute(text("SELECT * FROM get_approved_films()")).mappings().all()
        films = []
        for r in records:
            films.append(Film(
                id=r["id"], title=r["title"], director=r["director"], location=r["location"],
                year=r["year"], description=r["description"] or "", image_url=r["image_url"],
                user_id=r["user_id"], created_at=r["created_at"],
                status=FilmStatus.APPROVED, coordinates=record_coordinates(r),
            ))
        logger.debug("list_approved -> %d", len(films))
        return films

    def list_for_user(self, user_id: str) -> List[Film]:
        stmt = (
            select(FilmRow, func.ST_AsText(FilmRow.coordinates).label("wkt"))
            .where(FilmRow.user_id == user_id)
            .order_by(FilmRow.created_at.desc())
        )
        with db_errors("load your films"), self.session_factory() as db:
            rows = db.execute(stmt).all()
        return [self._to_film(r.Film, coordinates=r.wkt) for r in rows]

    def _list_with_authors(self, status: Optional[FilmStatus]) -> List[Film]:
        stmt = (
            select(
                FilmRow,
                func.ST_AsText(FilmRow.coordinates).label("wkt"),
                ProfileRow.full_name,
                ProfileRow.username,
            )
            .outerjoin(ProfileRow, ProfileRow.id == FilmRow.user_id)
            .order_by(FilmRow.created_at)
        )
        if status is not None:
            stmt = stmt.where(FilmRow.status == status.value)
        with db_errors("load films"), self.session_factory() as db:
            rows = db.execute(stmt).all()
        return [
            self._to_film(r.Film, coordinates=r.wkt, submitted_by=r.full_name or r.username or "Unknown user")
            for r in rows
        ]

    def list_by_status(self, status: FilmStatus) -> List[Film]:
        return self._list_with_authors(status)

    def list_all(self) -> List[Film]:
        return self._list_with_authors(None)

    def get(self, film_id: str) -> Film:
        stmt = select(FilmRow, func.ST_AsGeoJSON(FilmRow.coordinates).label("geojson")).where(FilmRow.id == film_id)
        with db_errors("load film"), self.session_factory() as db:
            row = db.execute(stmt).first()
        if row is None:
            raise NotFoundError()
        return self._to_film(row.Film, coordinates=row.geojson)

    # ---------------------------
    # Escrituras
    # ---------------------------
    def create(self, draft: FilmDraft) -> Film:
        geom = point_for(draft.coordinates)
        year = parse_year(draft.year, default_current=False)
        row = FilmRow(
            title=draft.title,
            director=draft.director,
            location=draft.location,
            year=year,
            description=draft.description,
            coordinates=geom,
            image_url=draft.image_url,
            status=FilmStatus.PENDING.value,
            rejection_reason=None,
            user_id=draft.user_id,
        )
        with db_errors("add film"), self.session_factory() as db:
            # films.user_id -> profiles.id: el primer envio crea el perfil vacio
            if db.get(ProfileRow, draft.user_id) is None:
                db.add(ProfileRow(id=draft.user_id, is_moderator=False))
                db.flush()
            db.add(row)
            db.commit()
            db.refresh(row)
        logger.info("Pelicula creada | id=%s user=%s lng=%.6f lat=%.6f",
                    row.id, row.user_id, draft.coordinates.lng, draft.coordinates.lat)
        return self._to_film(row, coordinates=draft.coordinates)

    def update(self, film_id: str, patch: Union[FilmPatch, Mapping[str, Any]]) -> Film:
        if isinstance(patch, FilmPatch):
            values = patch.model_dump(exclude_unset=True)
        else:
            values = dict(patch)
        values = {k: v for k, v in values.items() if k in UPDATABLE}

        if "coordinates" in values:
            values["coordinates"] = point_for(normalize_coordinates(values["coordinates"]))
        if "year" in values:
            values["year"] = parse_year(values["year"], default_current=False)
        if isinstance(values.get("status"), FilmStatus):
            values["status"] = values["status"].value

        with db_errors("update film"), self.session_factory() as db:
            row = db.get(FilmRow, film_id)
            if row is None:
                raise NotFoundError()
            for key, value in values.items():
                setattr(row, key, value)
            db.commit()
            db.refresh(row)
        logger.info("Pelicula actualizada | id=%s campos=%s", film_id, sorted(values))
        return self._to_film(row)

    def remove(self, film_id: str) -> None:
        with db_errors("delete film"), self.session_factory() as db:
            row = db.get(FilmRow, film_id)
            if row is None:
                raise NotFoundError()
            if row.image_url:
                filename = AssetStore.filename_from_url(row.image_url)
                try:
                    self.assets.delete(filename)
                except AssetStoreError:
                    # La imagen huerfana no bloquea el borrado del registro
                    logger.warning("No pude borrar la imagen %s de la pelicula %s", filename, film_id, exc_info=True)
            db.delete(row)
            db.commit()
        logger.info("Pelicula borrada | id=%s", film_id)

    def upload_image(self, data: bytes, content_type: Optional[str]) -> str:
        ext = ImageService.validate_upload(data, content_type, self.max_image_bytes)
        filename = f"{uuid.uuid4().hex}.{ext}"
        return self.assets.put(filename, data)
