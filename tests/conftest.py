import io
import threading
import time
import uuid
import zipfile
from pathlib import Path

import pytest

from upack.config import Config
from upack.errors import NotFoundError


class FakeFeed:
    """Stands in for Downloader: serves fixed payloads and records every download."""

    def __init__(self, payloads=None, listing=None, delay=0.0, marker_dir=None, error=None):
        self.payloads = payloads or {}
        self.listing = listing
        self.delay = delay
        self.marker_dir = Path(marker_dir) if marker_dir else None
        self.error = error
        self.downloads = []
        self.json_calls = []
        self._lock = threading.Lock()

    def get_json(self, url, credentials=None):
        self.json_calls.append(url)
        if self.listing is None:
            raise NotFoundError(f"Not found on feed: {url}")
        return self.listing

    def open_package(self, source_url, identifier, version, credentials=None):
        time.sleep(self.delay)
        with self._lock:
            self.downloads.append((identifier, str(version)))
        if self.marker_dir:
            (self.marker_dir / uuid.uuid4().hex).touch()
        if self.error:
            raise self.error
        return io.BytesIO(self.payloads[(identifier.group, identifier.name, str(version))])


def build_zip(entries):
    """entries: {archive path: bytes or None for a directory entry}"""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in entries.items():
            if data is None:
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(zipfile.ZipInfo(name, date_time=(2020, 1, 2, 3, 4, 6)), data)
    return buf.getvalue()


@pytest.fixture
def make_zip():
    return build_zip


@pytest.fixture
def fake_feed_cls():
    return FakeFeed


@pytest.fixture
def config(tmp_path):
    cfg = Config(tmp_path / "conf")
    cfg.user_registry = tmp_path / "user-registry"
    cfg.machine_registry = tmp_path / "machine-registry"
    cfg.show_progress = False
    cfg.lock_timeout = 30.0
    return cfg
