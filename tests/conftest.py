"""Shared fixtures for callrelay tests."""

from unittest.mock import AsyncMock

import pytest

from callrelay.integrations.ingest import IngestClient

STEM = "20240131_235901_unit1__TO_4112_FROM_9981"


@pytest.fixture()
def watch_root(tmp_path):
    """A watched root with one recorder subdirectory."""
    root = tmp_path / "recordings"
    (root / "site-a").mkdir(parents=True)
    return root


@pytest.fixture()
def write_pair():
    """Write ``<stem>.mp3`` and/or ``<stem>.txt`` into a directory."""

    def _write(directory, stem=STEM, *, mp3=True, txt=True):
        directory.mkdir(parents=True, exist_ok=True)
        mp3_path = directory / f"{stem}.mp3"
        txt_path = directory / f"{stem}.txt"
        if mp3:
            mp3_path.write_bytes(b"ID3 fake audio")
        if txt:
            txt_path.write_text("units responding to main street")
        return mp3_path, txt_path

    return _write


@pytest.fixture()
def mock_client():
    client = AsyncMock(spec=IngestClient)
    client.upload_pair.return_value = "accepted"
    return client
