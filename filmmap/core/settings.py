from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    PG_HOST: str = "localhost"
    PG_PORT: int = 5432
    PG_DB: str = "filmmap"
    PG_USER: str = "postgres"
    PG_PASSWORD: str = "postgres"

    # Almacen de imagenes (SFTP) + URL publica que lo sirve
    SFTP_HOST: str = "localhost"
    SFTP_PORT: int = 2222
    SFTP_USER: str = "filmmap"
    SFTP_PASSWORD: str = "filmmap"
    SFTP_BASE_PATH: str = "/upload/film-images"
    ASSET_PUBLIC_BASE_URL: str = "http://localhost:8080/film-images"

    MAX_IMAGE_SIZE_BYTES: int = 5 * 1024 * 1024

    # Mapbox: el token de geocoding cae al del mapa si no se define
    MAPBOX_ACCESS_TOKEN: str = ""
    GEOCODING_ACCESS_TOKEN: str = ""
    GEOCODING_BASE_URL: str = "https://api.mapbox.com/geocoding/v5/mapbox.places"
    GEOCODING_TIMEOUT_S: float = 10.0
    MAP_STYLE_URL: str = "mapbox://styles/mapbox/dark-v11"

    # Proveedor de identidad (compatible GoTrue)
    IDENTITY_URL: str = ""
    IDENTITY_ANON_KEY: str = ""
    IDENTITY_TIMEOUT_S: float = 10.0

    MAP_MAX_VIEWS: int = 500
    MAP_RETRY_BASE_DELAY_S: float = 0.5
    MAP_RETRY_MAX_DELAY_S: float = 8.0
    MAP_RETRY_MAX_ATTEMPTS: int = 8

    ENABLE_OTEL: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "http://localhost:4317"
    OTEL_SERVICE_NAME: str = "filmmap-api"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def geocoding_token(self) -> str:
        return self.GEOCODING_ACCESS_TOKEN or self.MAPBOX_ACCESS_TOKEN

@lru_cache
def get_settings() -> Settings:
    return Settings()
