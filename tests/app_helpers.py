"""Shared testing helpers for building the Flask app against temporary storage."""

from __future__ import annotations

from pathlib import Path

from flask import Flask

import app as app_module
from db import utils as db_utils
from storage.blobs import SQLBlobStore
from web.app_factory import AppServices, build_services

TEST_IDENTITY_SECRET = 'identity-test-secret'


def load_app(tmp_path: Path, *, public_base_url: str = 'https://shelf.example') -> tuple[Flask, AppServices]:
    """Return a testing app whose blobs and images live under ``tmp_path``."""

    engine = db_utils.build_engine_from_dsn(f"sqlite:///{tmp_path / 'app.db'}")
    services = build_services(
        blobs=SQLBlobStore(engine),
        image_dir=tmp_path / 'images',
        identity_secret=TEST_IDENTITY_SECRET,
        public_base_url=public_base_url,
    )
    flask_app = app_module.build_app(services, secret_key='test-secret')
    flask_app.config['TESTING'] = True
    flask_app.testing = True
    return flask_app, services


def auth_headers(services: AppServices, owner_id: str) -> dict[str, str]:
    return {'Authorization': f'Bearer {services.identity.issue(owner_id)}'}
