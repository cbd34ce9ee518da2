import logging
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from filmmap.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def database_url(settings: Settings) -> str:
    return (
        f"postgresql+psycopg://{settings.PG_USER}:{settings.PG_PASSWORD}"
        f"@{settings.PG_HOST}:{settings.PG_PORT}/{settings.PG_DB}"
    )


# create_engine no conecta: la primera conexion ocurre en init_db()
engine = create_engine(
    database_url(get_settings()),
    pool_pre_ping=True,
    future=True,
    connect_args={"connect_timeout": 10},
)
# expire_on_commit=False: los registros se convierten a schemas despues del commit
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def ping() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("DB error: %s", e)
        return False
