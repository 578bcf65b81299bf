"""Deterministic archive packing of an entity directory."""

import asyncio
import logging
import os
import zipfile
from pathlib import Path
from typing import List, Optional, Union

from ..errors import PackagingError

logger = logging.getLogger(__name__)


# Fixed entry timestamp so identical content yields identical archives
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
ENTRY_PERMISSIONS = 0o644 << 16


class Bundler:
    """Packs an entity directory into ``<archive_dir>/<directory name>.zip``."""

    def __init__(self, archive_dir: Union[str, Path], compression_level: int = 9):
        """Initialize bundler.

        Args:
            archive_dir: Directory receiving the archives
            compression_level: Deflate level, 0-9
        """
        self.archive_dir = Path(archive_dir)
        self.compression_level = compression_level

    def archive_path_for(self, directory: Path) -> Path:
        return self.archive_dir / f"{Path(directory).name}.zip"

    async def pack(self, directory: Union[str, Path], archive_name: Optional[str] = None) -> Path:
        """Archive the directory contents without a top-level folder.

        Args:
            directory: Entity directory to pack
            archive_name: Archive file name; defaults to ``<directory name>.zip``

        Returns:
            Path of the written archive

        Raises:
            PackagingError: If the directory cannot be read or the archive written
        """
        directory = Path(directory)
        archive_path = self.archive_dir / archive_name if archive_name else self.archive_path_for(directory)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_archive, directory, archive_path)

        logger.info(f"  packed {archive_path.name} ({archive_path.stat().st_size} bytes)")
        return archive_path

    @staticmethod
    def list_entries(directory: Path) -> List[Path]:
        """Files under the directory, sorted by archive name."""
        return sorted(
            (p for p in directory.rglob("*") if p.is_file()),
            key=lambda p: p.relative_to(directory).as_posix(),
        )

    def _write_archive(self, directory: Path, archive_path: Path) -> None:
        if not directory.is_dir():
            raise PackagingError(f"Not a directory: {directory}")

        tmp_path = archive_path.with_name(f".{archive_path.name}.part")
        try:
            archive_path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(
                tmp_path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
            ) as archive:
                for file_path in self.list_entries(directory):
                    info = zipfile.ZipInfo(
                        file_path.relative_to(directory).as_posix(),
                        date_time=ZIP_EPOCH,
                    )
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = ENTRY_PERMISSIONS
                    archive.writestr(info, file_path.read_bytes())
            os.replace(tmp_path, archive_path)
        except OSError as e:
            raise PackagingError(f"Could not archive {directory}: {e}") from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
