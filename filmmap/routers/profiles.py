from fastapi import APIRouter, Depends
from filmmap.schemas.profiles import Dashboard, Profile, ProfileUpdate
from filmmap.services.films import FilmService
from filmmap.services.identity import UserSession
from filmmap.services.profiles import ProfileRepository
from filmmap.routers.deps import current_session, get_film_service, get_profiles

router = APIRouter(prefix="/profiles", tags=["Profiles"])


@router.get("/me", response_model=Profile)
def me(session: UserSession = Depends(current_session), profiles: ProfileRepository = Depends(get_profiles)):
    return profiles.ensure(session.user_id)


@router.patch("/me", response_model=Profile)
def update_me(
    patch: ProfileUpdate,
    session: UserSession = Depends(current_session),
    profiles: ProfileRepository = Depends(get_profiles),
):
    return profiles.update(session.user_id, patch)


@router.get("/me/dashboard", response_model=Dashboard)
def dashboard(session: UserSession = Depends(current_session), service: FilmService = Depends(get_film_service)):
    return service.dashboard(session.user_id)
