"""
Ciclo de vida de una pelicula: pending -> approved | rejected.

approved y rejected son terminales. Repetir la transicion que ya se hizo
(aprobar una aprobada, rechazar una rechazada) no cambia nada y devuelve el
registro tal cual; cualquier otra salida de un estado terminal es un error.
"""
import logging
from typing import List, Optional

from filmmap.core.errors import AuthorizationError, InvalidTransitionError
from filmmap.schemas.films import Film, FilmStatus
from filmmap.services.film_repository import FilmRepository
from filmmap.services.profiles import ProfileRepository

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "No reason provided"

TRANSITIONS = {
    FilmStatus.PENDING: {FilmStatus.APPROVED, FilmStatus.REJECTED},
    FilmStatus.APPROVED: set(),
    FilmStatus.REJECTED: set(),
}


def needs_transition(current: FilmStatus, target: FilmStatus) -> bool:
    if current == target:
        return False
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(f"This film is already {current.value} and can no longer be {target.value}.")
    return True


class ModerationService:
    def __init__(self, films: FilmRepository, profiles: ProfileRepository):
        self.films = films
        self.profiles = profiles

    def require_moderator(self, actor_id: str) -> None:
        if not self.profiles.is_moderator(actor_id):
            logger.warning("Accion de moderacion denegada | user=%s", actor_id)
            raise AuthorizationError("Only moderators can review film submissions.")

    def pending_queue(self, actor_id: str) -> List[Film]:
        self.require_moderator(actor_id)
        return self.films.list_by_status(FilmStatus.PENDING)

    def all_films(self, actor_id: str) -> List[Film]:
        self.require_moderator(actor_id)
        return self.films.list_all()

    def approve(self, actor_id: str, film_id: str) -> Film:
        self.require_moderator(actor_id)
        film = self.films.get(film_id)
        if not needs_transition(film.status, FilmStatus.APPROVED):
            logger.info("Pelicula %s ya estaba aprobada", film_id)
            return film
        updated = self.films.update(film_id, {"status": FilmStatus.APPROVED, "rejection_reason": None})
        logger.info("Pelicula aprobada | id=%s por=%s", film_id, actor_id)
        return updated

    def reject(self, actor_id: str, film_id: str, reason: Optional[str]) -> Optional[Film]:
        """reason=None es un rechazo cancelado: no toca nada y devuelve None."""
        if reason is None:
            logger.debug("Rechazo cancelado | id=%s", film_id)
            return None
        self.require_moderator(actor_id)
        film = self.films.get(film_id)
        if not needs_transition(film.status, FilmStatus.REJECTED):
            logger.info("Pelicula %s ya estaba rechazada", film_id)
            return film
        updated = self.films.update(film_id, {
            "status": FilmStatus.REJECTED,
            "rejection_reason": reason.strip() or DEFAULT_REJECTION_REASON,
        })
        logger.info("Pelicula rechazada | id=%s por=%s", film_id, actor_id)
        return updated
