"""Pytest fixtures shared across the test suite."""

import os
import tempfile

_SCRATCH_DIR = tempfile.mkdtemp(prefix='game-shelf-tests-')
os.environ.setdefault('DB_DSN', f"sqlite:///{_SCRATCH_DIR}/default.db")
os.environ.setdefault('IMAGE_DIR', os.path.join(_SCRATCH_DIR, 'images'))
os.environ.setdefault('LOG_DIR', os.path.join(_SCRATCH_DIR, 'logs'))
os.environ.setdefault('BLOB_BACKEND', 'sql')
os.environ.setdefault('APP_SECRET_KEY', 'test-secret')

import pytest

from db import utils as db_utils
from library.store import LibraryStore
from shares.service import ShareService
from storage.blobs import SQLBlobStore
from storage.images import FilesystemImageStore


@pytest.fixture
def blob_store(tmp_path):
    """SQL blob store backed by a fresh SQLite file."""

    engine = db_utils.build_engine_from_dsn(f"sqlite:///{tmp_path / 'blobs.db'}")
    store = SQLBlobStore(engine)
    yield store
    engine.dispose()


@pytest.fixture
def image_store(tmp_path):
    return FilesystemImageStore(tmp_path / 'images', owner_secret='image-test-secret')


@pytest.fixture
def library_store(blob_store, image_store):
    return LibraryStore(blob_store, images=image_store)


@pytest.fixture
def share_service(blob_store, library_store):
    return ShareService(blob_store, library_store)
