"""Moves archives to durable storage and removes local state afterwards."""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from .storage import ArtifactStore, ZIP_CONTENT_TYPE
from ..errors import UploadError

logger = logging.getLogger(__name__)


class RemoteMover:
    """Uploads an archive and, only once the upload is confirmed, deletes it
    together with the directory it was built from."""

    def __init__(self, store: ArtifactStore, signed_urls: bool = False):
        """Initialize mover.

        Args:
            store: Shared durable store
            signed_urls: Report signed URLs instead of plain object URLs
        """
        self.store = store
        self.signed_urls = signed_urls

    async def move(
        self,
        archive_path: Union[str, Path],
        key: str,
        source_dir: Optional[Union[str, Path]] = None,
    ) -> str:
        """Upload the archive under ``key`` and clean up.

        Args:
            archive_path: Local archive to upload
            key: Remote object key
            source_dir: Directory the archive was built from, deleted on success

        Returns:
            Durable URL of the uploaded archive

        Raises:
            UploadError: If the upload fails or cannot be confirmed; the archive and
                directory are kept and no remote object is left behind
        """
        archive_path = Path(archive_path)

        try:
            ref = await self.store.put(
                archive_path,
                key,
                content_type=ZIP_CONTENT_TYPE,
                metadata={'source': archive_path.name},
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"  upload of {key} failed, keeping local files: {e}")
            raise UploadError(key, str(e), cause=e) from e

        try:
            url = await self.store.get_url(key, signed=self.signed_urls)
        except asyncio.CancelledError:
            await self._rollback(key)
            raise
        except Exception as e:
            logger.error(f"  could not confirm {key}, removing remote copy and keeping local files: {e}")
            await self._rollback(key)
            raise UploadError(key, str(e), cause=e) from e

        logger.info(f"  uploaded {key} ({ref.size_bytes} bytes): {url}")

        self._remove_file(archive_path)
        if source_dir is not None:
            self._remove_dir(Path(source_dir))
        return url

    async def _rollback(self, key: str) -> None:
        """Delete a remote object whose upload could not be confirmed."""
        try:
            await self.store.delete(key)
        except Exception as e:
            logger.error(f"  could not remove unconfirmed remote object {key}: {e}")

    @staticmethod
    def _remove_file(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"  could not delete archive {path}: {e}")

    @staticmethod
    def _remove_dir(path: Path) -> None:
        try:
            shutil.rmtree(path)
            logger.info(f"  deleted local folder {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"  could not delete folder {path}: {e}")
