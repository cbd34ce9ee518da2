from pydantic import BaseModel
from typing import Optional
from filmmap.schemas.films import FilmList, StatusCounts


class Profile(BaseModel):
    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = None
    is_moderator: bool = False


class ProfileUpdate(BaseModel):
    username: Optional[str] = None
    full_name: Optional[str] = None
    website: Optional[str] = None


class Dashboard(BaseModel):
    profile: Profile
    counts: StatusCounts
    films: FilmList
