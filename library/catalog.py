"""RAWG catalog client and mapping of catalog results onto game fields."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Iterable, Mapping
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import config as app_config
from helpers import _format_name_list, _normalize_text, _parse_iterable
from library.errors import UpstreamError
from library.models import GamePatch, PlatformRef

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM_DESCRIPTION = 'Multiple Platforms'
DEFAULT_PUBLISHER = 'Unknown'


def catalog_platforms(game: Mapping[str, Any]) -> list[PlatformRef]:
    """Return the platforms listed on a catalog result."""

    platforms: list[PlatformRef] = []
    for item in game.get('platforms') or []:
        if not isinstance(item, Mapping):
            continue
        platform = item.get('platform') if isinstance(item.get('platform'), Mapping) else item
        name = _normalize_text(platform.get('name'))
        raw_id = platform.get('id')
        if name and raw_id not in (None, ''):
            platforms.append(PlatformRef(id=str(raw_id), name=name))
    return platforms


def _player_count(game: Mapping[str, Any]) -> int:
    for tag in _parse_iterable(game.get('tags')):
        if 'Multiplayer' in tag:
            return 2
    return 1


def patch_from_catalog(
    game: Mapping[str, Any],
    *,
    platform: PlatformRef | None = None,
    wishlisted: bool = False,
) -> GamePatch:
    """Build create fields for one catalog result and optional owned platform."""

    if platform is not None:
        description = platform.name
    else:
        description = (
            _format_name_list(game.get('platforms'), nested_key='platform')
            or DEFAULT_PLATFORM_DESCRIPTION
        )
    publishers = _parse_iterable(game.get('publishers'))
    catalog_id = game.get('id')
    return GamePatch(
        name=_normalize_text(game.get('name')),
        description=description,
        genre=_format_name_list(game.get('genres')) or None,
        release_date=_normalize_text(game.get('released')) or None,
        players=_player_count(game),
        publisher=publishers[0] if publishers else DEFAULT_PUBLISHER,
        image=_normalize_text(game.get('background_image')) or None,
        selected_platform=platform,
        is_wishlisted=bool(wishlisted),
        source_catalog_id=str(catalog_id) if catalog_id not in (None, '') else None,
    ).normalized()


def patches_for_platforms(
    game: Mapping[str, Any],
    platforms: Iterable[PlatformRef | Mapping[str, Any]] | None = None,
    *,
    wishlisted: bool = False,
) -> list[GamePatch]:
    """Return one create patch per owned platform (or one without a platform)."""

    selected = [PlatformRef.parse(item) for item in (platforms or [])]
    selected = [item for item in selected if item is not None]
    if not selected:
        return [patch_from_catalog(game, wishlisted=wishlisted)]
    return [
        patch_from_catalog(game, platform=platform, wishlisted=wishlisted)
        for platform in selected
    ]


def best_cover_match(name: str, results: Iterable[Mapping[str, Any]]) -> str | None:
    """Return the cover of the exact-name result, falling back to the first one."""

    candidates = [item for item in results if isinstance(item, Mapping)]
    if not candidates:
        return None
    wanted = _normalize_text(name).casefold()
    match = next(
        (item for item in candidates if _normalize_text(item.get('name')).casefold() == wanted),
        candidates[0],
    )
    return _normalize_text(match.get('background_image')) or None


class RawgClient:
    """Minimal RAWG search client."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str = 'https://api.rawg.io/api',
        timeout: float = 10.0,
        opener: Callable[..., Any] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._api_key = (api_key or self._env.get('RAWG_API_KEY') or '').strip()
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._opener = opener or urlopen

    @classmethod
    def from_config(cls, **kwargs: Any) -> 'RawgClient':
        return cls(
            api_key=app_config.RAWG_API_KEY,
            base_url=app_config.RAWG_BASE_URL,
            **kwargs,
        )

    def search(self, query: str, *, page_size: int = 5) -> list[dict[str, Any]]:
        params = {'search': query, 'page_size': max(1, int(page_size))}
        if self._api_key:
            params['key'] = self._api_key
        request = Request(f"{self._base_url}/games?{urlencode(params)}", method='GET')
        request.add_header('Accept', 'application/json')
        try:
            with self._opener(request, timeout=self._timeout) as response:
                body = response.read()
        except HTTPError as exc:
            raise UpstreamError(f'catalog search failed: {exc.code}') from exc
        except OSError as exc:
            raise UpstreamError(f'catalog search failed: {exc}') from exc
        try:
            payload = json.loads(body.decode('utf-8')) if body else {}
        except ValueError as exc:
            raise UpstreamError('invalid JSON response from catalog') from exc
        results = payload.get('results') if isinstance(payload, Mapping) else None
        return [item for item in results or [] if isinstance(item, dict)]

    def find_cover_image(self, name: str) -> str | None:
        return best_cover_match(name, self.search(name, page_size=5))


__all__ = [
    'DEFAULT_PLATFORM_DESCRIPTION',
    'DEFAULT_PUBLISHER',
    'RawgClient',
    'best_cover_match',
    'catalog_platforms',
    'patch_from_catalog',
    'patches_for_platforms',
]
