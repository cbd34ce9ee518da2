import logging
from fastapi import APIRouter, Depends, Response
from filmmap.schemas.films import Film, FilmList, RejectRequest
from filmmap.services.identity import UserSession
from filmmap.services.moderation import ModerationService
from filmmap.routers.deps import current_session, get_moderation

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/moderation", tags=["Moderation"])


@router.get("/pending", response_model=FilmList)
def pending(session: UserSession = Depends(current_session), moderation: ModerationService = Depends(get_moderation)):
    return FilmList(items=moderation.pending_queue(session.user_id))


@router.get("/films", response_model=FilmList)
def all_films(session: UserSession = Depends(current_session), moderation: ModerationService = Depends(get_moderation)):
    return FilmList(items=moderation.all_films(session.user_id))


@router.post("/{film_id}/approve", response_model=Film)
def approve(
    film_id: str,
    session: UserSession = Depends(current_session),
    moderation: ModerationService = Depends(get_moderation),
):
    return moderation.approve(session.user_id, film_id)


@router.post("/{film_id}/reject", response_model=Film)
def reject(
    film_id: str,
    payload: RejectRequest,
    session: UserSession = Depends(current_session),
    moderation: ModerationService = Depends(get_moderation),
):
    """
    reason=null cancela el rechazo (204, nada cambia).
    reason="" rechaza con "No reason provided".
    """
    film = moderation.reject(session.user_id, film_id, payload.reason)
    if film is None:
        return Response(status_code=204)
    return film
