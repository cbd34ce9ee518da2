import uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, Integer, Text, Boolean, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from geoalchemy2 import Geography

class Base(DeclarativeBase):
    pass

class Profile(Base):
    __tablename__ = "profiles"

    # Mismo id que el usuario del proveedor de identidad
    id: Mapped[str] = mapped_column(String, primary_key=True)
    username: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    website: Mapped[str | None] = mapped_column(String, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
    is_moderator: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")

class Film(Base):
    __tablename__ = "films"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="films_status_check"),
        CheckConstraint(
            "(status = 'rejected') = (rejection_reason IS NOT NULL)",
            name="films_rejection_reason_check",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String, unique=True)
    director: Mapped[str | None] = mapped_column(String, nullable=True)
    location: Mapped[str] = mapped_column(String)
    year: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(Text, default="")

    # Un unico punto WGS84 (lon/lat)
    coordinates: Mapped[object] = mapped_column(Geography(geometry_type="POINT", srid=4326), nullable=False)

    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending", server_default="pending", index=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id", ondelete="CASCADE"), index=True)

    created_at: Mapped[object] = mapped_column(DateTime(timezone=True), server_default=func.now())
