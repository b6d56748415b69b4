"""Owner-scoped game collection API routes."""

from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, jsonify, request

from library.models import GamePatch
from library.store import LibraryStore
from routes.api_utils import BadRequestError, handle_api_errors, json_body
from web.identity import require_owner_id

games_blueprint = Blueprint("games", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Provide shared state required by the game collection endpoints."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"games routes missing context value: {key}")
    return _context[key]


def _store() -> LibraryStore:
    return _ctx('library_store')


def _entry_id(entry_id: str | None) -> str:
    value = (entry_id or request.args.get('id') or '').strip()
    if not value:
        raise BadRequestError('Game ID required')
    return value


@games_blueprint.route('/api/games', methods=['GET'])
@handle_api_errors
def list_games():
    owner_id = require_owner_id()
    entries = _store().list(owner_id)
    return jsonify([entry.to_dict() for entry in entries])


@games_blueprint.route('/api/games', methods=['POST'])
@handle_api_errors
def create_game():
    owner_id = require_owner_id()
    patch = GamePatch.from_payload(json_body())
    entry = _store().create(owner_id, patch)
    return jsonify(entry.to_dict()), 201


@games_blueprint.route('/api/games', methods=['PUT'], defaults={'entry_id': None})
@games_blueprint.route('/api/games/<entry_id>', methods=['PUT'])
@handle_api_errors
def update_game(entry_id: str | None):
    owner_id = require_owner_id()
    target = _entry_id(entry_id)
    patch = GamePatch.from_payload(json_body())
    entry = _store().update(owner_id, target, patch)
    return jsonify(entry.to_dict())


@games_blueprint.route('/api/games', methods=['DELETE'], defaults={'entry_id': None})
@games_blueprint.route('/api/games/<entry_id>', methods=['DELETE'])
@handle_api_errors
def delete_game(entry_id: str | None):
    owner_id = require_owner_id()
    target = _entry_id(entry_id)
    _store().delete(owner_id, target)
    return jsonify({'success': True})
