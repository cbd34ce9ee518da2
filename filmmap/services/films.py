import logging
from typing import Optional
from pydantic import BaseModel

from filmmap.core.errors import AuthorizationError, InvalidTransitionError, NotFoundError
from filmmap.schemas.films import Film, FilmList, FilmPatch, FilmStatus, StatusCounts
from filmmap.schemas.profiles import Dashboard, Profile
from filmmap.services.film_repository import FilmRepository
from filmmap.services.profiles import ProfileRepository

logger = logging.getLogger(__name__)


class FilmDetail(BaseModel):
    film: Film
    author: Optional[Profile] = None


class FilmService:
    """Reglas de dueño/moderador alrededor del repositorio."""

    def __init__(self, films: FilmRepository, profiles: ProfileRepository):
        self.films = films
        self.profiles = profiles

    def _can_manage(self, actor_id: Optional[str], film: Film) -> bool:
        if not actor_id:
            return False
        return film.user_id == actor_id or self.profiles.is_moderator(actor_id)

    def detail(self, film_id: str, viewer_id: Optional[str] = None) -> FilmDetail:
        film = self.films.get(film_id)
        # Las no aprobadas solo las ve el autor o un moderador
        if film.status != FilmStatus.APPROVED and not self._can_manage(viewer_id, film):
            raise NotFoundError()
        return FilmDetail(film=film, author=self.profiles.get(film.user_id))

    def edit(self, actor_id: str, film_id: str, patch: FilmPatch) -> Film:
        film = self.films.get(film_id)
        if not self._can_manage(actor_id, film):
            raise AuthorizationError("You do not have permission to edit this film.")
        if film.status != FilmStatus.PENDING:
            raise InvalidTransitionError("Only pending films can be edited.")
        return self.films.update(film_id, patch)

    def delete(self, actor_id: str, film_id: str) -> None:
        film = self.films.get(film_id)
        if not self._can_manage(actor_id, film):
            logger.warning("Borrado denegado | film=%s user=%s", film_id, actor_id)
            raise AuthorizationError("You do not have permission to delete this film.")
        self.films.remove(film_id)

    def dashboard(self, user_id: str) -> Dashboard:
        profile = self.profiles.ensure(user_id)
        films = self.films.list_for_user(user_id)
        counts = StatusCounts()
        for film in films:
            setattr(counts, film.status.value, getattr(counts, film.status.value) + 1)
        return Dashboard(profile=profile, counts=counts, films=FilmList(items=films))
