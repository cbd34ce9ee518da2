"""
Cliente del proveedor de identidad (API compatible con GoTrue) y estado de
autenticacion por vista de mapa.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

import httpx
from jose import jwt, JWTError
from pydantic import BaseModel, Field

from filmmap.core.errors import ConfigurationError, ServiceUnavailableError, SessionExpiredError
from filmmap.core.settings import Settings

logger = logging.getLogger(__name__)


class UserSession(BaseModel):
    user_id: str
    email: Optional[str] = None
    expires_at: Optional[datetime] = None
    access_token: str = Field(..., repr=False, exclude=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(timezone.utc))


def token_expiry(access_token: str) -> Optional[datetime]:
    """exp del JWT sin verificar la firma; la verificacion la hace el proveedor."""
    try:
        claims = jwt.get_unverified_claims(access_token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


class IdentityClient:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        if not settings.IDENTITY_URL or not settings.IDENTITY_ANON_KEY:
            raise ConfigurationError(
                "Identity provider configuration is incomplete. Set IDENTITY_URL and IDENTITY_ANON_KEY."
            )
        self.base_url = settings.IDENTITY_URL.rstrip("/")
        self._anon_key = settings.IDENTITY_ANON_KEY
        self._client = client or httpx.AsyncClient(timeout=settings.IDENTITY_TIMEOUT_S)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_session(self, access_token: Optional[str]) -> UserSession:
        if not access_token:
            raise SessionExpiredError("No active session. Please sign in again.")

        expires_at = token_expiry(access_token)
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            logger.info("Token expirado (exp=%s)", expires_at.isoformat())
            raise SessionExpiredError()

        try:
            response = await self._client.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self._anon_key, "Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error("Identity: error de red (%s)", type(e).__name__)
            raise ServiceUnavailableError("Authentication service is unavailable. Please try again later.") from None

        if response.status_code in (401, 403):
            raise SessionExpiredError()
        if not response.is_success:
            logger.error("Identity: el proveedor respondio %s", response.status_code)
            raise ServiceUnavailableError("Authentication service is unavailable. Please try again later.")

        data = response.json()
        user_id = data.get("id")
        if not user_id:
            raise SessionExpiredError()
        return UserSession(user_id=user_id, email=data.get("email"), expires_at=expires_at, access_token=access_token)


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


AuthListener = Callable[[AuthEvent, Optional[UserSession]], None]


class AuthState:
    """Sesion actual de una vista; avisa a los suscriptores en cada cambio."""

    def __init__(self, session: Optional[UserSession] = None):
        self.session = session
        self._listeners: List[AuthListener] = []

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            listener(event, self.session)

    def sign_in(self, session: UserSession) -> None:
        self.session = session
        logger.debug("AuthState: SIGNED_IN user=%s", session.user_id)
        self._emit(AuthEvent.SIGNED_IN)

    def sign_out(self) -> None:
        self.session = None
        logger.debug("AuthState: SIGNED_OUT")
        self._emit(AuthEvent.SIGNED_OUT)
