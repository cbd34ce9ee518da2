import logging
from typing import Optional
from sqlalchemy.orm import sessionmaker
from filmmap.core.errors import ConflictError
from filmmap.db.errors import db_errors
from filmmap.db.models import Profile as ProfileRow
from filmmap.schemas.profiles import Profile, ProfileUpdate

logger = logging.getLogger(__name__)


class ProfileRepository:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_profile(row: ProfileRow) -> Profile:
        return Profile(
            id=row.id,
            username=row.username,
            full_name=row.full_name,
            website=row.website,
            avatar_url=row.avatar_url,
            is_moderator=bool(row.is_moderator),
        )

    def get(self, user_id: str) -> Optional[Profile]:
        with db_errors("load profile"), self.session_factory() as db:
            row = db.get(ProfileRow, user_id)
        return self._to_profile(row) if row else None

    def ensure(self, user_id: str) -> Profile:
        """El perfil se crea vacio la primera vez que el usuario hace algo."""
        with db_errors("load profile"), self.session_factory() as db:
            row = db.get(ProfileRow, user_id)
            if row is None:
                row = ProfileRow(id=user_id, is_moderator=False)
                db.add(row)
                db.commit()
                logger.info("Perfil creado | user=%s", user_id)
        return self._to_profile(row)

    def is_moderator(self, user_id: str) -> bool:
        # Se confia en el flag tal como lo guarda la base
        profile = self.get(user_id)
        return bool(profile and profile.is_moderator)

    def update(self, user_id: str, patch: ProfileUpdate) -> Profile:
        values = patch.model_dump(exclude_unset=True)
        try:
            with db_errors("update profile"), self.session_factory() as db:
                row = db.get(ProfileRow, user_id)
                if row is None:
                    row = ProfileRow(id=user_id, is_moderator=False)
                    db.add(row)
                for key, value in values.items():
                    setattr(row, key, value)
                db.commit()
        except ConflictError:
            raise ConflictError("That username is already taken.")
        return self._to_profile(row)
