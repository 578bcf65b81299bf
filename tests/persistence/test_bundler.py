"""Tests for deterministic archive packing."""

import hashlib
import os
import pytest
import zipfile

from evidence_vault.errors import PackagingError
from evidence_vault.persistence.bundler import Bundler, ZIP_EPOCH


@pytest.fixture
def entity_dir(tmp_path):
    directory = tmp_path / "out" / "1001"
    directory.mkdir(parents=True)
    (directory / "1001__06_Invoice.png").write_bytes(b"invoice")
    (directory / "1001__01_Attendance_Status_Proof.png").write_bytes(b"attendance")
    (directory / "1001__06_Invoice.pdf").write_bytes(b"%PDF")
    (directory / "1001__manifest.json").write_text("{}")
    return directory


def digest(path):
    return hashlib.sha256(path.read_bytes()).hexdigest()


class TestBundler:
    """Tests for Bundler."""

    @pytest.mark.asyncio
    async def test_archive_layout(self, tmp_path, entity_dir):
        bundler = Bundler(tmp_path / "archives")

        archive_path = await bundler.pack(entity_dir)

        assert archive_path == tmp_path / "archives" / "1001.zip"
        with zipfile.ZipFile(archive_path) as archive:
            assert archive.namelist() == [
                "1001__01_Attendance_Status_Proof.png",
                "1001__06_Invoice.pdf",
                "1001__06_Invoice.png",
                "1001__manifest.json",
            ]
            assert archive.read("1001__06_Invoice.png") == b"invoice"
            assert all(info.date_time == ZIP_EPOCH for info in archive.infolist())
            assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in archive.infolist())

    @pytest.mark.asyncio
    async def test_deterministic(self, tmp_path, entity_dir):
        first = await Bundler(tmp_path / "a").pack(entity_dir)

        # Different modification times must not change the archive
        for path in entity_dir.iterdir():
            os.utime(path, (1_000_000_000, 1_000_000_000))
        second = await Bundler(tmp_path / "b").pack(entity_dir)

        assert digest(first) == digest(second)

    @pytest.mark.asyncio
    async def test_nested_files(self, tmp_path, entity_dir):
        (entity_dir / "extra").mkdir()
        (entity_dir / "extra" / "note.txt").write_text("n")

        archive_path = await Bundler(tmp_path / "archives").pack(entity_dir)

        with zipfile.ZipFile(archive_path) as archive:
            assert "extra/note.txt" in archive.namelist()

    @pytest.mark.asyncio
    async def test_custom_archive_name(self, tmp_path, entity_dir):
        archive_path = await Bundler(tmp_path / "archives").pack(entity_dir, "renamed.zip")
        assert archive_path.name == "renamed.zip"

    @pytest.mark.asyncio
    async def test_existing_archive_replaced(self, tmp_path, entity_dir):
        archive_dir = tmp_path / "archives"
        archive_dir.mkdir()
        (archive_dir / "1001.zip").write_bytes(b"stale")

        archive_path = await Bundler(archive_dir).pack(entity_dir)

        assert zipfile.is_zipfile(archive_path)
        assert sorted(p.name for p in archive_dir.iterdir()) == ["1001.zip"]

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        with pytest.raises(PackagingError):
            await Bundler(tmp_path / "archives").pack(tmp_path / "nope")

    def test_list_entries_sorted(self, entity_dir):
        names = [p.name for p in Bundler.list_entries(entity_dir)]
        assert names == sorted(names)
