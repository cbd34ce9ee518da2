"""
Fakes compartidos por la suite: repositorio en memoria (guarda el punto como
WKT, igual que lo devuelve ST_AsText), perfiles, almacen de imagenes,
geocoder e identidad.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from filmmap.core.errors import ConflictError, NotFoundError, SessionExpiredError
from filmmap.geo import fallback_label, to_wkt
from filmmap.mapsync.engine import MapSyncEngine, RetryPolicy
from filmmap.mapsync.widget import InMemoryMapWidget
from filmmap.schemas.films import Film, FilmDraft, FilmStatus, parse_year
from filmmap.schemas.geocoding import Place
from filmmap.schemas.profiles import Profile
from filmmap.services.film_repository import UPDATABLE, point_for
from filmmap.services.identity import AuthState, UserSession
from filmmap.services.image_service import ImageService

FAST_RETRY = RetryPolicy(base_delay=0.001, max_delay=0.004, max_attempts=5)


def make_film(**overrides) -> Film:
    values = dict(
        id=str(uuid.uuid4()),
        title="Paris Is Burning",
        director="Jennie Livingston",
        location="New York",
        year=1990,
        description="Ballroom culture in New York.",
        coordinates={"lng": -73.99, "lat": 40.73},
        status=FilmStatus.APPROVED,
        user_id="owner-1",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return Film(**values)


def make_session(user_id: str = "user-1", token: str = "token-1") -> UserSession:
    return UserSession(user_id=user_id, email=f"{user_id}@example.org", access_token=token)


class FakeAssets:
    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.deleted: List[str] = []

    def put(self, filename: str, data: bytes) -> str:
        self.files[filename] = data
        return f"https://assets.example.org/film-images/{filename}"

    def delete(self, filename: str) -> None:
        self.deleted.append(filename)
        self.files.pop(filename, None)

    def healthy(self) -> bool:
        return True


class FakeFilmRepository:
    def __init__(self, assets: Optional[FakeAssets] = None, max_image_bytes: int = 5 * 1024 * 1024):
        self.assets = assets or FakeAssets()
        self.max_image_bytes = max_image_bytes
        self.rows: Dict[str, dict] = {}
        self.created: List[FilmDraft] = []
        self.updates: List[tuple] = []
        self.gets: List[str] = []
        self.fail_create: Optional[Exception] = None

    def add(self, film: Film) -> Film:
        row = film.model_dump()
        row["coordinates"] = to_wkt(film.coordinates)
        self.rows[film.id] = row
        return film

    def _film(self, row: dict) -> Film:
        return Film(**row)

    def list_approved(self) -> List[Film]:
        return [self._film(r) for r in self.rows.values() if r["status"] == FilmStatus.APPROVED]

    def list_for_user(self, user_id: str) -> List[Film]:
        return [self._film(r) for r in self.rows.values() if r["user_id"] == user_id]

    def list_by_status(self, status: FilmStatus) -> List[Film]:
        return [self._film(r) for r in self.rows.values() if r["status"] == status]

    def list_all(self) -> List[Film]:
        return [self._film(r) for r in self.rows.values()]

    def get(self, film_id: str) -> Film:
        self.gets.append(film_id)
        if film_id not in self.rows:
            raise NotFoundError()
        return self._film(self.rows[film_id])

    def create(self, draft: FilmDraft) -> Film:
        if self.fail_create is not None:
            raise self.fail_create
        point_for(draft.coordinates)
        if any(r["title"] == draft.title for r in self.rows.values()):
            raise ConflictError()
        self.created.append(draft)
        film = Film(
            id=str(uuid.uuid4()),
            title=draft.title,
            director=draft.director,
            location=draft.location,
            year=parse_year(draft.year, default_current=False),
            description=draft.description,
            coordinates=to_wkt(draft.coordinates),
            image_url=draft.image_url,
            status=FilmStatus.PENDING,
            user_id=draft.user_id,
            created_at=datetime.now(timezone.utc),
        )
        return self.add(film)

    def update(self, film_id: str, patch) -> Film:
        values = patch if isinstance(patch, dict) else patch.model_dump(exclude_unset=True)
        self.updates.append((film_id, values))
        if film_id not in self.rows:
            raise NotFoundError()
        for key, value in values.items():
            if key in UPDATABLE:
                self.rows[film_id][key] = value
        return self._film(self.rows[film_id])

    def remove(self, film_id: str) -> None:
        row = self.rows.pop(film_id, None)
        if row is None:
            raise NotFoundError()
        if row.get("image_url"):
            self.assets.delete(row["image_url"].rsplit("/", 1)[-1])

    def upload_image(self, data: bytes, content_type: Optional[str]) -> str:
        ext = ImageService.validate_upload(data, content_type, self.max_image_bytes)
        return self.assets.put(f"{uuid.uuid4().hex}.{ext}", data)


class FakeProfiles:
    def __init__(self, moderators=()):
        self.profiles: Dict[str, Profile] = {}
        for user_id in moderators:
            self.profiles[user_id] = Profile(id=user_id, username=user_id, is_moderator=True)

    def get(self, user_id: str) -> Optional[Profile]:
        return self.profiles.get(user_id)

    def ensure(self, user_id: str) -> Profile:
        return self.profiles.setdefault(user_id, Profile(id=user_id))

    def is_moderator(self, user_id: str) -> bool:
        profile = self.profiles.get(user_id)
        return bool(profile and profile.is_moderator)

    def update(self, user_id: str, patch) -> Profile:
        profile = self.ensure(user_id)
        updated = profile.model_copy(update=patch.model_dump(exclude_unset=True))
        self.profiles[user_id] = updated
        return updated


class FakeGeocoder:
    def __init__(self, label: Optional[str] = "Rennes, Brittany, France"):
        self.label = label
        self.reverse_calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    async def reverse_geocode(self, lng: float, lat: float) -> str:
        self.reverse_calls.append((lng, lat))
        if self.gate is not None:
            await self.gate.wait()
        return self.label or fallback_label(lng, lat)

    async def forward_geocode(self, query: str) -> List[Place]:
        return [Place(place_name=query, center=[2.35, 48.85])]

    async def geocode(self, query: str) -> List[Place]:
        return await self.forward_geocode(query)

    async def aclose(self) -> None:
        pass


class FakeIdentity:
    def __init__(self, *sessions: UserSession):
        self.sessions = {s.access_token: s for s in sessions}
        self.calls: List[Optional[str]] = []
        self.gate: Optional[asyncio.Event] = None

    async def get_session(self, access_token: Optional[str]) -> UserSession:
        self.calls.append(access_token)
        if self.gate is not None:
            await self.gate.wait()
        if access_token not in self.sessions:
            raise SessionExpiredError()
        return self.sessions[access_token]

    async def aclose(self) -> None:
        pass


def loaded_widget() -> InMemoryMapWidget:
    widget = InMemoryMapWidget("mapbox://styles/test")
    widget.load_style()
    return widget


def ready_engine(widget=None, geocoder=None, session=None, read_only=None) -> MapSyncEngine:
    """Engine ya arrancado sobre un widget con el estilo cargado (sincronico)."""
    widget = widget or loaded_widget()
    engine = MapSyncEngine(
        widget_factory=lambda: widget,
        geocoder=geocoder or FakeGeocoder(),
        read_only=read_only,
        auth_state=AuthState(session),
        retry=FAST_RETRY,
    )
    asyncio.run(engine.start())
    return engine


@pytest.fixture
def assets():
    return FakeAssets()


@pytest.fixture
def repository(assets):
    return FakeFilmRepository(assets)


@pytest.fixture
def profiles():
    return FakeProfiles(moderators=["mod-1"])
