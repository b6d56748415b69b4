"""Cover image persistence and upload normalization."""

from __future__ import annotations

import hashlib
import hmac
import io
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Callable

from PIL import Image, ImageOps, UnidentifiedImageError

from helpers import sanitize_file_name
from library.errors import NotFoundError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = 'image/jpeg'
_META_SUFFIX = '.meta.json'

_RESAMPLE_LANCZOS = Image.Resampling.LANCZOS


@dataclass(frozen=True)
class PreparedImage:
    data: bytes
    content_type: str
    width: int
    height: int


def open_image_auto_rotate(source: Any) -> Image.Image:
    """Open image from path or file-like and apply its EXIF orientation."""

    img = Image.open(source) if not isinstance(source, Image.Image) else source
    img = ImageOps.exif_transpose(img)
    return img.convert('RGB')


def prepare_cover_upload(
    stream: BinaryIO,
    *,
    max_edge: int = 1600,
    quality: int = 90,
) -> PreparedImage:
    """Decode an uploaded cover, bound its size and re-encode it as JPEG."""

    try:
        img = open_image_auto_rotate(stream)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ValidationError('invalid image upload') from exc
    if max(img.size) > max_edge:
        img.thumbnail((max_edge, max_edge), _RESAMPLE_LANCZOS)
    buf = io.BytesIO()
    img.save(buf, format='JPEG', quality=quality)
    width, height = img.size
    return PreparedImage(
        data=buf.getvalue(),
        content_type=DEFAULT_CONTENT_TYPE,
        width=width,
        height=height,
    )


def owner_image_prefix(owner_id: str, secret: str) -> str:
    """Return the opaque directory name holding ``owner_id``'s uploads."""

    digest = hmac.new(secret.encode('utf-8'), owner_id.encode('utf-8'), hashlib.sha256)
    return digest.hexdigest()[:32]


def build_image_key(
    prefix: str,
    original_name: str,
    *,
    clock: Callable[[], float] = time.time,
    extension: str = '.jpg',
) -> str:
    """Return ``<prefix>/<millis>-<sanitized name>`` for a new upload."""

    stem = sanitize_file_name(os.path.splitext(original_name or '')[0])
    millis = int(clock() * 1000)
    return f"{prefix}/{millis}-{stem}{extension}"


class FilesystemImageStore:
    """Image store writing blobs below ``root`` with a JSON metadata sidecar.

    Uploads live under a per-owner directory named by an HMAC of the owner
    id, never the id itself.
    """

    def __init__(self, root: str | Path, *, owner_secret: str) -> None:
        if not owner_secret:
            raise ValueError('owner_secret is required')
        self._root = Path(root).resolve()
        self._owner_secret = owner_secret

    @property
    def root(self) -> Path:
        return self._root

    def owner_prefix(self, owner_id: str) -> str:
        return owner_image_prefix(owner_id, self._owner_secret)

    def new_key(self, owner_id: str, original_name: str, **kwargs: Any) -> str:
        return build_image_key(self.owner_prefix(owner_id), original_name, **kwargs)

    def owned_by(self, owner_id: str, key: str) -> bool:
        if not owner_id or not isinstance(key, str):
            return False
        return key.startswith(f"{self.owner_prefix(owner_id)}/")

    def _path_for(self, key: str) -> Path:
        parts = [part for part in key.split('/') if part]
        if not parts or any(part in ('.', '..') for part in parts):
            raise NotFoundError('Image not found')
        if parts[-1].endswith(_META_SUFFIX):
            raise NotFoundError('Image not found')
        path = self._root.joinpath(*parts).resolve()
        if self._root not in path.parents:
            raise NotFoundError('Image not found')
        return path

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + _META_SUFFIX)

    def store(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        path = self._path_for(key)
        meta = dict(metadata or {})
        meta['content_type'] = content_type or DEFAULT_CONTENT_TYPE
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            self._meta_path(path).write_text(json.dumps(meta), encoding='utf-8')
        except OSError as exc:
            logger.error('Failed to store image %s: %s', key, exc)
            raise UpstreamError('Failed to store image') from exc

    def retrieve(self, key: str) -> tuple[bytes, str]:
        path = self._path_for(key)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError('Image not found') from exc
        except OSError as exc:
            logger.error('Failed to read image %s: %s', key, exc)
            raise UpstreamError('Failed to read image') from exc
        content_type = DEFAULT_CONTENT_TYPE
        try:
            meta = json.loads(self._meta_path(path).read_text(encoding='utf-8'))
        except (OSError, ValueError):
            meta = {}
        if isinstance(meta, dict) and meta.get('content_type'):
            content_type = str(meta['content_type'])
        return data, content_type

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        for candidate in (path, self._meta_path(path)):
            try:
                candidate.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.error('Failed to delete image %s: %s', key, exc)
                raise UpstreamError('Failed to delete image') from exc


__all__ = [
    'FilesystemImageStore',
    'PreparedImage',
    'build_image_key',
    'open_image_auto_rotate',
    'owner_image_prefix',
    'prepare_cover_upload',
]
