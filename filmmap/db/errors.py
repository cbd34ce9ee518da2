import logging
from contextlib import contextmanager
from sqlalchemy.exc import SQLAlchemyError, OperationalError, InterfaceError
from filmmap.core.errors import (
    AuthorizationError,
    ConflictError,
    FilmMapError,
    MalformedDataError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)


def sqlstate(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None) or ""


def translate_db_error(exc: SQLAlchemyError, action: str) -> FilmMapError:
    """
    23505 unique_violation   -> ConflictError
    22xxx data_exception     -> MalformedDataError (23502 not_null y 23514 check tambien)
    42501 / politicas RLS    -> AuthorizationError
    sin conexion             -> ServiceUnavailableError
    """
    code = sqlstate(exc)
    if code == "23505":
        return ConflictError()
    if code.startswith("22") or code in ("23502", "23514"):
        return MalformedDataError()
    if code == "42501" or "row-level security" in str(getattr(exc, "orig", "")):
        return AuthorizationError()
    if isinstance(exc, (OperationalError, InterfaceError)):
        return ServiceUnavailableError("The film archive is unavailable. Please try again later.")
    return FilmMapError(f"Failed to {action}. Please try again.")


@contextmanager
def db_errors(action: str):
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("DB error al %s: %s (sqlstate=%s)", action, type(e).__name__, sqlstate(e) or "-")
        raise translate_db_error(e, action) from e
