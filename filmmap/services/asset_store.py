import io
import logging
import posixpath
import paramiko
from filmmap.core.errors import AssetStoreError
from filmmap.core.settings import Settings

logger = logging.getLogger(__name__)


class AssetStore:
    """
    Imagenes de las peliculas en un servidor SFTP; un servidor web publica
    SFTP_BASE_PATH bajo ASSET_PUBLIC_BASE_URL.
    """

    def __init__(self, settings: Settings):
        self.host = settings.SFTP_HOST
        self.port = settings.SFTP_PORT
        self.user = settings.SFTP_USER
        self.password = settings.SFTP_PASSWORD
        self.base_path = settings.SFTP_BASE_PATH
        self.public_base_url = settings.ASSET_PUBLIC_BASE_URL.rstrip("/")

    def _open(self):
        transport = paramiko.Transport((self.host, self.port))
        try:
            transport.connect(username=self.user, password=self.password)
            return transport, paramiko.SFTPClient.from_transport(transport)
        except Exception:
            transport.close()
            raise

    def public_url(self, filename: str) -> str:
        return f"{self.public_base_url}/{filename}"

    @staticmethod
    def filename_from_url(url: str) -> str:
        return url.rstrip("/").split("/")[-1]

    def put(self, filename: str, data: bytes) -> str:
        path = posixpath.join(self.base_path, filename)
        try:
            transport, sftp = self._open()
        except Exception as e:
            logger.exception("No pude conectar al SFTP")
            raise AssetStoreError() from e
        try:
            sftp.putfo(io.BytesIO(data), path)
        except Exception as e:
            logger.exception("Error subiendo %s", path)
            raise AssetStoreError() from e
        finally:
            sftp.close()
            transport.close()
        logger.info("Imagen subida | path=%s bytes=%d", path, len(data))
        return self.public_url(filename)

    def delete(self, filename: str) -> None:
        path = posixpath.join(self.base_path, filename)
        try:
            transport, sftp = self._open()
        except Exception as e:
            raise AssetStoreError() from e
        try:
            sftp.remove(path)
        except FileNotFoundError:
            logger.warning("La imagen %s ya no existe", path)
        except Exception as e:
            raise AssetStoreError() from e
        finally:
            sftp.close()
            transport.close()

    def healthy(self) -> bool:
        try:
            transport, sftp = self._open()
            sftp.listdir(self.base_path)
            sftp.close(); transport.close()
            return True
        except Exception:
            return False
