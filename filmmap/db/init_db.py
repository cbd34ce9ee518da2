from sqlalchemy import text
from filmmap.db.session import engine
from filmmap.db.models import Base

# Devuelve lng/lat ya extraidos: evita parsear la geografia en cada lectura del mapa
APPROVED_FILMS_FUNCTION = """
CREATE OR REPLACE FUNCTION get_approved_films()
RETURNS TABLE (
    id varchar, title varchar, director varchar, location varchar, year integer,
    description text, image_url varchar, user_id varchar, created_at timestamptz,
    lng double precision, lat double precision
)
LANGUAGE sql STABLE AS $$
    SELECT f.id, f.title, f.director, f.location, f.year, f.description,
           f.image_url, f.user_id, f.created_at,
           ST_X(f.coordinates::geometry), ST_Y(f.coordinates::geometry)
    FROM films f
    WHERE f.status = 'approved'
$$
"""

def init_db():
    with engine.begin() as conn:
        # Habilitar extensión PostGIS si no existe
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
        Base.metadata.create_all(bind=conn)
        conn.execute(text(APPROVED_FILMS_FUNCTION))
