"""Game entry, partial update and share record types."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping

from helpers import _coerce_optional_int, _normalize_text, is_external_image
from library.errors import ValidationError


class _Unset:
    """Marker for fields that were not provided in a partial update."""

    _instance: '_Unset | None' = None

    def __new__(cls) -> '_Unset':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return 'UNSET'


UNSET: Any = _Unset()

SCOPE_LIBRARY = 'library'
SCOPE_WISHLIST = 'wishlist'
SHARE_SCOPES = (SCOPE_LIBRARY, SCOPE_WISHLIST)
_SCOPE_ALIASES = {'full': SCOPE_LIBRARY}

DEFAULT_DISPLAY_NAME = 'Anonymous User'

# Legacy camelCase keys accepted on input.
FIELD_ALIASES: dict[str, str] = {
    'platformDescription': 'description',
    'releaseDate': 'release_date',
    'playerCount': 'players',
    'selectedPlatform': 'selected_platform',
    'isWishlisted': 'is_wishlisted',
    'rawgId': 'source_catalog_id',
    'sourceCatalogId': 'source_catalog_id',
    'createdAt': 'created_at',
    'userId': 'owner_id',
}

PUBLIC_GAME_FIELDS = (
    'id',
    'name',
    'genre',
    'release_date',
    'players',
    'publisher',
    'image',
    'selected_platform',
)


@dataclass(frozen=True)
class PlatformRef:
    id: str
    name: str

    @classmethod
    def parse(cls, value: Any) -> 'PlatformRef | None':
        if value is None:
            return None
        if isinstance(value, PlatformRef):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError('selected_platform must be an object with id and name')
        raw_id = value.get('id')
        name = _normalize_text(value.get('name'))
        if raw_id in (None, '') or not name:
            raise ValidationError('selected_platform requires id and name')
        return cls(id=_normalize_text(raw_id), name=name)

    def to_dict(self) -> dict[str, str]:
        return {'id': self.id, 'name': self.name}


@dataclass(frozen=True)
class GameEntry:
    id: str
    owner_id: str
    name: str
    description: str
    created_at: str
    genre: str | None = None
    release_date: str | None = None
    players: int | None = None
    publisher: str | None = None
    image: str | None = None
    selected_platform: PlatformRef | None = None
    is_wishlisted: bool = False
    source_catalog_id: str | None = None

    @property
    def has_private_image(self) -> bool:
        return bool(self.image) and not is_external_image(self.image)

    def apply(self, patch: 'GamePatch') -> 'GameEntry':
        """Return a copy with every provided field of ``patch`` merged in."""

        return replace(self, **patch.provided())

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'name': self.name,
            'description': self.description,
            'genre': self.genre,
            'release_date': self.release_date,
            'players': self.players,
            'publisher': self.publisher,
            'image': self.image,
            'selected_platform': (
                self.selected_platform.to_dict() if self.selected_platform else None
            ),
            'is_wishlisted': self.is_wishlisted,
            'source_catalog_id': self.source_catalog_id,
            'created_at': self.created_at,
        }

    def to_public_dict(self) -> dict[str, Any]:
        data = self.to_dict()
        return {key: data[key] for key in PUBLIC_GAME_FIELDS}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> 'GameEntry':
        data = _canonical_keys(payload)
        players = data.get('players')
        try:
            players = _coerce_optional_int(players)
        except ValueError:
            players = None
        return cls(
            id=str(data.get('id', '')),
            owner_id=str(data.get('owner_id') or data.get('user_id') or ''),
            name=_normalize_text(data.get('name')),
            description=_normalize_text(data.get('description')),
            created_at=str(data.get('created_at') or ''),
            genre=_optional_text(data.get('genre')),
            release_date=_optional_text(data.get('release_date')),
            players=players,
            publisher=_optional_text(data.get('publisher')),
            image=_optional_text(data.get('image')),
            selected_platform=_lenient_platform(data.get('selected_platform')),
            is_wishlisted=bool(data.get('is_wishlisted') or False),
            source_catalog_id=_optional_text(data.get('source_catalog_id')),
        )


@dataclass(frozen=True)
class GamePatch:
    """Partial game fields; ``UNSET`` means absent and ``None`` means clear."""

    name: Any = UNSET
    description: Any = UNSET
    genre: Any = UNSET
    release_date: Any = UNSET
    players: Any = UNSET
    publisher: Any = UNSET
    image: Any = UNSET
    selected_platform: Any = UNSET
    is_wishlisted: Any = UNSET
    source_catalog_id: Any = UNSET

    @classmethod
    def from_payload(cls, payload: Any) -> 'GamePatch':
        if not isinstance(payload, Mapping):
            raise ValidationError('expected a JSON object')
        data = _canonical_keys(payload)
        values: dict[str, Any] = {}
        for name in _PATCH_FIELDS:
            if name in data:
                values[name] = data[name]
        return cls(**values).normalized()

    def normalized(self) -> 'GamePatch':
        """Return a copy with provided values coerced and validated."""

        values: dict[str, Any] = {}
        for name, value in self.provided().items():
            values[name] = _normalize_field(name, value)
        return replace(GamePatch(), **values)

    def provided(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in _PATCH_FIELDS
            if getattr(self, name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.provided()

    def require_create_fields(self) -> None:
        missing = [
            name for name in ('name', 'description')
            if not _normalize_text(getattr(self, name) or '')
        ]
        if missing:
            raise ValidationError(
                'Missing required fields: ' + ', '.join(missing),
                payload={'missing': missing},
            )

    def to_payload(self) -> dict[str, Any]:
        data = dict(self.provided())
        platform = data.get('selected_platform')
        if isinstance(platform, PlatformRef):
            data['selected_platform'] = platform.to_dict()
        return data


_PATCH_FIELDS = tuple(f.name for f in fields(GamePatch))


@dataclass
class ShareRecord:
    share_id: str
    owner_id: str
    display_name: str
    scope: str
    created_at: str
    active: bool = True

    def includes(self, entry: GameEntry) -> bool:
        if self.scope == SCOPE_WISHLIST:
            return entry.is_wishlisted
        return not entry.is_wishlisted

    def to_dict(self) -> dict[str, Any]:
        return {
            'share_id': self.share_id,
            'owner_id': self.owner_id,
            'display_name': self.display_name,
            'scope': self.scope,
            'created_at': self.created_at,
            'active': self.active,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> 'ShareRecord':
        data = dict(payload)
        return cls(
            share_id=str(data.get('share_id') or data.get('shareId') or ''),
            owner_id=str(data.get('owner_id') or data.get('userId') or ''),
            display_name=(
                _normalize_text(data.get('display_name') or data.get('ownerName'))
                or DEFAULT_DISPLAY_NAME
            ),
            scope=normalize_scope(data.get('scope') or data.get('shareType')),
            created_at=str(data.get('created_at') or data.get('createdAt') or ''),
            active=bool(data.get('active', data.get('isActive', True))),
        )


def normalize_scope(value: Any) -> str:
    """Return a canonical share scope; ``None`` and blanks mean the library."""

    text = _normalize_text(value).lower()
    if not text:
        return SCOPE_LIBRARY
    text = _SCOPE_ALIASES.get(text, text)
    if text not in SHARE_SCOPES:
        raise ValidationError(f'unsupported share scope: {value}')
    return text


def _canonical_keys(payload: Mapping[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for key, value in payload.items():
        canonical = FIELD_ALIASES.get(key, key)
        if canonical in data and key != canonical:
            continue
        data[canonical] = value
    return data


def _optional_text(value: Any) -> str | None:
    text = _normalize_text(value)
    return text or None


def _lenient_platform(value: Any) -> PlatformRef | None:
    try:
        return PlatformRef.parse(value)
    except ValidationError:
        return None


def _normalize_field(name: str, value: Any) -> Any:
    if name in ('name', 'description'):
        text = _normalize_text(value)
        if not text:
            raise ValidationError(f'{name} must not be empty')
        return text
    if name == 'players':
        try:
            return _coerce_optional_int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError('players must be a whole number') from exc
    if name == 'selected_platform':
        return PlatformRef.parse(value)
    if name == 'is_wishlisted':
        if value is None:
            return False
        if not isinstance(value, bool):
            raise ValidationError('is_wishlisted must be true or false')
        return value
    return _optional_text(value)


__all__ = [
    'DEFAULT_DISPLAY_NAME',
    'FIELD_ALIASES',
    'GameEntry',
    'GamePatch',
    'PUBLIC_GAME_FIELDS',
    'PlatformRef',
    'SCOPE_LIBRARY',
    'SCOPE_WISHLIST',
    'SHARE_SCOPES',
    'ShareRecord',
    'UNSET',
    'normalize_scope',
]
