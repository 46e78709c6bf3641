"""BundleLock / ImagesLock parsing helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import yaml

from imgcopy.core.errors import LockParseError

BUNDLE_LOCK_KIND = "BundleLock"
IMAGES_LOCK_KIND = "ImagesLock"
LOCK_API_VERSION = "imgpkg.carvel.dev/v1alpha1"


@dataclass(frozen=True)
class BundleLock:
    path: Path
    image: str
    tag: str = ""
    api_version: str = LOCK_API_VERSION
    kind: str = field(default=BUNDLE_LOCK_KIND, init=False)


@dataclass(frozen=True)
class ImageLockEntry:
    image: str
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ImagesLock:
    path: Path | None
    images: tuple[ImageLockEntry, ...]
    api_version: str = LOCK_API_VERSION
    kind: str = field(default=IMAGES_LOCK_KIND, init=False)

    def image_refs(self) -> list[str]:
        return [entry.image for entry in self.images]


LockRecord = Union[BundleLock, ImagesLock]


def read_lock_kind(path: Path) -> str:
    """Return the `kind` of a lock file without validating the rest of it."""
    _, payload = _load_payload(path)
    return str(payload.get("kind", "")).strip()


def read_lock(path: Path) -> LockRecord:
    kind = read_lock_kind(path)
    if kind == BUNDLE_LOCK_KIND:
        return read_bundle_lock(path)
    if kind == IMAGES_LOCK_KIND:
        return read_images_lock(path)
    raise LockParseError(
        str(Path(path)),
        f"Unexpected lock kind, expected {BUNDLE_LOCK_KIND} or {IMAGES_LOCK_KIND}, got: {kind!r}",
    )


def read_bundle_lock(path: Path) -> BundleLock:
    lock_path, payload = _load_payload(path)
    _require_kind(payload, BUNDLE_LOCK_KIND, lock_path)

    spec = _require_mapping(payload, "spec", lock_path)
    image = _require_mapping(spec, "image", lock_path, prefix="spec.")
    return BundleLock(
        path=lock_path,
        image=_require_non_empty(image, "image", lock_path, prefix="spec.image."),
        tag=str(image.get("tag", "") or "").strip(),
        api_version=str(payload.get("apiVersion", LOCK_API_VERSION)),
    )


def read_images_lock(path: Path) -> ImagesLock:
    lock_path, payload = _load_payload(path)
    return _images_lock_from_payload(payload, str(lock_path), lock_path)


def parse_images_lock(text: str, source: str) -> ImagesLock:
    """Parse ImagesLock content that does not live on the local filesystem."""
    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise LockParseError(source, f"invalid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise LockParseError(source, "lock file must be a mapping")
    return _images_lock_from_payload(payload, source, None)


def _images_lock_from_payload(
    payload: dict[str, Any], source: str, lock_path: Path | None
) -> ImagesLock:
    _require_kind(payload, IMAGES_LOCK_KIND, source)
    spec = _require_mapping(payload, "spec", source)

    images_raw = spec.get("images") or []
    if not isinstance(images_raw, list):
        raise LockParseError(source, "spec.images must be a list")

    entries: list[ImageLockEntry] = []
    for index, raw_entry in enumerate(images_raw):
        if not isinstance(raw_entry, dict):
            raise LockParseError(source, f"spec.images[{index}] must be a mapping")
        annotations = raw_entry.get("annotations") or {}
        if not isinstance(annotations, dict):
            raise LockParseError(source, f"spec.images[{index}].annotations must be a mapping")
        entries.append(
            ImageLockEntry(
                image=_require_non_empty(raw_entry, "image", source, prefix=f"spec.images[{index}]."),
                annotations={str(k): str(v) for k, v in annotations.items()},
            )
        )

    return ImagesLock(
        path=lock_path,
        images=tuple(entries),
        api_version=str(payload.get("apiVersion", LOCK_API_VERSION)),
    )


def _load_payload(path: Path) -> tuple[Path, dict[str, Any]]:
    lock_path = Path(path).expanduser().resolve()
    if not lock_path.is_file():
        raise FileNotFoundError(f"lock file not found: {lock_path}")

    try:
        payload = yaml.safe_load(lock_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise LockParseError(str(lock_path), f"invalid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise LockParseError(str(lock_path), "lock file must be a mapping")
    return lock_path, payload


def _require_kind(payload: dict[str, Any], expected: str, source: object) -> None:
    kind = str(payload.get("kind", "")).strip()
    if kind != expected:
        raise LockParseError(str(source), f"expected kind {expected!r}, got: {kind!r}")


def _require_mapping(
    payload: dict[str, Any], key: str, source: object, prefix: str = ""
) -> dict[str, Any]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise LockParseError(str(source), f"{prefix}{key} must be a mapping")
    return value


def _require_non_empty(
    payload: dict[str, Any], key: str, source: object, prefix: str = ""
) -> str:
    value = str(payload.get(key, "") or "").strip()
    if value:
        return value
    raise LockParseError(str(source), f"{prefix}{key} is required")
