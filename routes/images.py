"""Cover image upload and retrieval routes."""

from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, Response, jsonify, request

from helpers import IMAGE_ENDPOINT, resolve_image_url
from library.errors import NotFoundError
from routes.api_utils import BadRequestError, handle_api_errors
from storage.images import (
    FilesystemImageStore,
    prepare_cover_upload,
)
from web.identity import require_owner_id

images_blueprint = Blueprint("images", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Provide shared state required by the image endpoints."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"images routes missing context value: {key}")
    return _context[key]


def _images() -> FilesystemImageStore:
    return _ctx('image_store')


def _file_key() -> str:
    key = (request.args.get('file') or '').strip()
    if not key:
        raise BadRequestError('File parameter required')
    return key


@images_blueprint.route(IMAGE_ENDPOINT, methods=['POST'])
@handle_api_errors
def upload_image():
    owner_id = require_owner_id()
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise BadRequestError('No file provided')
    prepared = prepare_cover_upload(upload.stream, max_edge=_ctx('max_cover_edge'))
    images = _images()
    key = images.new_key(owner_id, upload.filename)
    images.store(
        key,
        prepared.data,
        prepared.content_type,
        metadata={'original_name': upload.filename},
    )
    return jsonify(
        {
            'file_name': key,
            'url': resolve_image_url(key, endpoint=IMAGE_ENDPOINT),
            'width': prepared.width,
            'height': prepared.height,
        }
    ), 201


@images_blueprint.route(IMAGE_ENDPOINT, methods=['GET'])
@handle_api_errors
def get_image():
    data, content_type = _images().retrieve(_file_key())
    response = Response(data, mimetype=content_type)
    response.headers['Cache-Control'] = 'public, max-age=31536000'
    return response


@images_blueprint.route(IMAGE_ENDPOINT, methods=['DELETE'])
@handle_api_errors
def delete_image():
    owner_id = require_owner_id()
    key = _file_key()
    images = _images()
    if not images.owned_by(owner_id, key):
        raise NotFoundError('Image not found')
    images.delete(key)
    return jsonify({'success': True})
