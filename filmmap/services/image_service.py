import io
import logging
from typing import Optional
from PIL import Image, UnidentifiedImageError
from filmmap.core.errors import FilmValidationError

logger = logging.getLogger(__name__)

# Formato de Pillow -> extension del archivo subido
EXTENSIONS = {
    "JPEG": "jpg",
    "PNG": "png",
    "GIF": "gif",
    "WEBP": "webp",
}


class ImageService:
    @staticmethod
    def check_declared(content_type: Optional[str], size: int, max_bytes: int) -> None:
        """
        Chequeos baratos antes de leer el contenido: tipo declarado y tamaño.
        """
        if not content_type or not content_type.startswith("image/"):
            raise FilmValidationError("Please select an image file (jpg, png, etc.)")
        if size > max_bytes:
            mb = max_bytes // (1024 * 1024)
            raise FilmValidationError(f"File size exceeds {mb}MB. Please choose a smaller image.")

    @staticmethod
    def sniff_extension(data: bytes) -> str:
        """
        Abre la imagen con Pillow y devuelve la extension segun el formato real.
        No confiamos en el nombre del archivo ni en el content-type.
        """
        try:
            img = Image.open(io.BytesIO(data))
            fmt = img.format
            img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError):
            logger.debug("sniff_extension: Pillow no reconoce el archivo", exc_info=True)
            raise FilmValidationError("Please select an image file (jpg, png, etc.)")
        ext = EXTENSIONS.get(fmt or "")
        if not ext:
            raise FilmValidationError("Unsupported image format. Use JPG, PNG, GIF or WEBP.")
        return ext

    @staticmethod
    def validate_upload(data: bytes, content_type: Optional[str], max_bytes: int) -> str:
        ImageService.check_declared(content_type, len(data), max_bytes)
        ext = ImageService.sniff_extension(data)
        logger.debug("Imagen valida | bytes=%d ext=%s", len(data), ext)
        return ext
