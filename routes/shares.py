"""Share-link API routes."""

from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, jsonify, request

from routes.api_utils import BadRequestError, handle_api_errors
from shares.service import ShareService
from web.identity import require_owner_id

shares_blueprint = Blueprint("shares", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Provide shared state required by the share endpoints."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"shares routes missing context value: {key}")
    return _context[key]


def _service() -> ShareService:
    return _ctx('share_service')


def _base_url() -> str:
    configured = _context.get('public_base_url') or ''
    return configured or request.host_url


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _share_id(share_id: str | None) -> str:
    value = (share_id or request.args.get('shareId') or '').strip()
    if not value:
        raise BadRequestError('Share ID required')
    return value


@shares_blueprint.route('/api/shared-library', methods=['POST'])
@handle_api_errors
def create_share():
    owner_id = require_owner_id()
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise BadRequestError('expected a JSON object')
    display_name = _first_present(payload, 'display_name', 'displayName', 'ownerName')
    scope = _first_present(payload, 'scope', 'shareType')
    result = _service().create_share(
        owner_id, display_name, scope, base_url=_base_url()
    )
    return jsonify(result), 201


@shares_blueprint.route('/api/shared-library', methods=['GET'], defaults={'share_id': None})
@shares_blueprint.route('/api/shared-library/<share_id>', methods=['GET'])
@handle_api_errors
def resolve_share(share_id: str | None):
    return jsonify(_service().resolve_share(_share_id(share_id)))


@shares_blueprint.route('/api/shared-library', methods=['DELETE'], defaults={'share_id': None})
@shares_blueprint.route('/api/shared-library/<share_id>', methods=['DELETE'])
@handle_api_errors
def revoke_share(share_id: str | None):
    owner_id = require_owner_id()
    _service().revoke_share(owner_id, _share_id(share_id))
    return jsonify({'success': True})
