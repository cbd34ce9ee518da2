import logging
from typing import Optional
from fastapi import APIRouter, Depends, Response
from filmmap.schemas.films import Film, FilmList, FilmPatch
from filmmap.services.film_repository import FilmRepository
from filmmap.services.films import FilmDetail, FilmService
from filmmap.services.identity import UserSession
from filmmap.routers.deps import current_session, get_film_service, get_repository, optional_session

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/films", tags=["Films"])


@router.get("", response_model=FilmList)
def list_films(films: FilmRepository = Depends(get_repository)):
    """Peliculas aprobadas; es lo que ve cualquier visitante."""
    return FilmList(items=films.list_approved())


@router.get("/mine", response_model=FilmList)
def my_films(session: UserSession = Depends(current_session), films: FilmRepository = Depends(get_repository)):
    return FilmList(items=films.list_for_user(session.user_id))


@router.get("/{film_id}", response_model=FilmDetail)
def get_film(
    film_id: str,
    session: Optional[UserSession] = Depends(optional_session),
    service: FilmService = Depends(get_film_service),
):
    return service.detail(film_id, session.user_id if session else None)


@router.patch("/{film_id}", response_model=Film)
def edit_film(
    film_id: str,
    patch: FilmPatch,
    session: UserSession = Depends(current_session),
    service: FilmService = Depends(get_film_service),
):
    film = service.edit(session.user_id, film_id, patch)
    logger.info("Edicion | film=%s user=%s", film_id, session.user_id)
    return film


@router.delete("/{film_id}", status_code=204)
def delete_film(
    film_id: str,
    session: UserSession = Depends(current_session),
    service: FilmService = Depends(get_film_service),
):
    service.delete(session.user_id, film_id)
    return Response(status_code=204)
