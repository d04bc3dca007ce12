"""Tests for the raw content archive."""

from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from clinic_radar.ingestion.archive import ArchivedPage, LocalFileArchive


class TestLocalFileArchive:
    """Tests for LocalFileArchive."""

    def test_save_and_load(self, tmp_path: Path) -> None:
        archive = LocalFileArchive(tmp_path)
        snapshot_id = uuid4()
        pages = [
            ArchivedPage(url="https://clinic.example.com", text="울쎄라 써마지"),
            ArchivedPage(url="https://clinic.example.com/doctor", text="김철수 원장", page_type="doctor"),
        ]

        record = archive.save(snapshot_id, uuid4(), "ab" + "0" * 62, pages, datetime(2026, 3, 1, tzinfo=UTC))

        assert record.page_count == 2
        assert record.compressed_size_bytes > 0
        assert Path(record.file_path).exists()
        assert "2026/03/01/ab" in record.file_path.replace("\\", "/")
        assert archive.load(snapshot_id) == pages

    def test_load_from_fresh_instance(self, tmp_path: Path) -> None:
        snapshot_id = uuid4()
        LocalFileArchive(tmp_path).save(snapshot_id, uuid4(), "cd" * 32, [ArchivedPage(url="u", text="t")])

        loaded = LocalFileArchive(tmp_path).load(snapshot_id)

        assert loaded == [ArchivedPage(url="u", text="t")]

    def test_missing_snapshot(self, tmp_path: Path) -> None:
        assert LocalFileArchive(tmp_path).load(uuid4()) is None

    def test_directory_created_on_first_save(self, tmp_path: Path) -> None:
        base = tmp_path / "archive"
        archive = LocalFileArchive(base)
        assert not base.exists()
        assert archive.load(uuid4()) is None

        archive.save(uuid4(), uuid4(), "cd" + "0" * 62, [ArchivedPage(url="https://a.example.com", text="x")])

        assert base.exists()
