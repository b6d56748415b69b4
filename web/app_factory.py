"""Flask application factory and service wiring."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from flask import Flask

import config as app_config
from library.store import LibraryStore
from routes.api_utils import register_api_error_handlers
from shares.service import ShareService
from storage.blobs import BlobStore, build_blob_store
from storage.images import FilesystemImageStore
from web.identity import IdentityVerifier, init_identity

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Collaborators shared by the route blueprints of one application."""

    blobs: BlobStore
    images: FilesystemImageStore
    library: LibraryStore
    shares: ShareService
    identity: IdentityVerifier
    public_base_url: str = ''
    max_cover_edge: int = 1600


def build_services(
    *,
    blobs: BlobStore | None = None,
    image_dir: str | Path | None = None,
    identity_secret: str | None = None,
    public_base_url: str | None = None,
) -> AppServices:
    """Return services built from ``config`` unless overridden."""

    if blobs is None:
        blobs = build_blob_store(
            app_config.BLOB_BACKEND,
            dsn=app_config.DB_DSN,
            redis_url=app_config.REDIS_URL,
            timeout=app_config.DB_CONNECT_TIMEOUT_SECONDS,
        )
    secret = identity_secret or app_config.IDENTITY_SECRET
    images = FilesystemImageStore(
        image_dir or app_config.IMAGE_DIR_PATH, owner_secret=secret
    )
    library = LibraryStore(blobs, images=images)
    shares = ShareService(blobs, library)
    identity = IdentityVerifier(
        secret,
        max_age=app_config.IDENTITY_TOKEN_MAX_AGE_SECONDS,
    )
    return AppServices(
        blobs=blobs,
        images=images,
        library=library,
        shares=shares,
        identity=identity,
        public_base_url=(
            app_config.PUBLIC_BASE_URL if public_base_url is None else public_base_url
        ),
        max_cover_edge=app_config.MAX_COVER_EDGE,
    )


def create_app(
    flask_app: Flask,
    *,
    services: AppServices,
    configure_blueprints: Callable[[Flask, AppServices], None],
) -> Flask:
    """Attach identity, JSON error handlers and blueprints to ``flask_app``."""

    init_identity(flask_app, services.identity)
    register_api_error_handlers(flask_app)
    configure_blueprints(flask_app, services)
    logger.debug('Configured %s with blueprints %s', flask_app.import_name, list(flask_app.blueprints))
    return flask_app


__all__ = ['AppServices', 'build_services', 'create_app']
