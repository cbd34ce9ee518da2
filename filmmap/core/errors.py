"""
Taxonomia de errores del dominio.

Cada error lleva un status HTTP y un mensaje pensado para mostrarse al usuario;
el handler registrado en main.py los convierte en respuestas JSON.
"""


class FilmMapError(Exception):
    status_code = 500
    kind = "error"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(FilmMapError):
    kind = "configuration"
    default_message = "Service configuration is incomplete."


class ServiceUnavailableError(FilmMapError):
    status_code = 503
    kind = "unavailable"
    default_message = "A remote service is unavailable. Please try again later."


class GeocodingError(ServiceUnavailableError):
    kind = "geocoding"
    default_message = "Failed to geocode location."


class AssetStoreError(ServiceUnavailableError):
    kind = "asset_store"
    default_message = "Image storage is unavailable. Please try again later."


class FilmValidationError(FilmMapError):
    status_code = 422
    kind = "validation"
    default_message = "Some fields are invalid. Please check your inputs."


class MissingLocationError(FilmValidationError):
    kind = "missing_location"
    default_message = "Please select a location on the map first."


class AuthorizationError(FilmMapError):
    status_code = 403
    kind = "authorization"
    default_message = "Permission error: your session may have expired. Please sign out and sign in again."


class SessionExpiredError(AuthorizationError):
    status_code = 401
    kind = "session"
    default_message = "Your session may have expired. Please sign out and sign in again."


class ConflictError(FilmMapError):
    status_code = 409
    kind = "conflict"
    default_message = "A film with this title already exists. Please use a different title."


class InvalidTransitionError(ConflictError):
    kind = "invalid_transition"
    default_message = "This film has already been reviewed."


class MalformedDataError(FilmMapError):
    status_code = 422
    kind = "malformed"
    default_message = "There was an issue with the data format. Please check your inputs."


class NotFoundError(FilmMapError):
    status_code = 404
    kind = "not_found"
    default_message = "Film not found."
