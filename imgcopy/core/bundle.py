"""Bundle detection and referenced-image extraction."""

from __future__ import annotations

import io
import json
import logging
import tarfile

from imgcopy.core.errors import BundleError
from imgcopy.core.lockfile import parse_images_lock
from imgcopy.core.reference import ImageReference, parse_reference
from imgcopy.core.registry import Manifest, RegistryClient

logger = logging.getLogger(__name__)

BUNDLE_CONFIG_LABEL = "dev.carvel.imgpkg.bundle"
BUNDLE_IMAGES_LOCK_PATH = ".imgpkg/images.yml"


def is_bundle(ref: str, registry: RegistryClient) -> bool:
    """Return True when the image config of `ref` carries the bundle label."""
    image_ref = parse_reference(ref)
    manifest = _image_manifest(image_ref, registry)

    config_digest = manifest.payload().get("config", {}).get("digest")
    if not config_digest:
        return False
    config = json.loads(registry.get_blob(image_ref.repository, config_digest))
    labels = (config.get("config") or {}).get("Labels") or {}
    bundle = BUNDLE_CONFIG_LABEL in labels
    logger.debug("%s is %s", ref, "a bundle" if bundle else "an image")
    return bundle


def get_referenced_images(ref: str, registry: RegistryClient) -> list[str]:
    """Return the images listed in the bundle's ImagesLock, in declared order."""
    image_ref = parse_reference(ref)
    manifest = _image_manifest(image_ref, registry)

    for layer_digest in manifest.blob_digests()[1:]:
        blob = registry.get_blob(image_ref.repository, layer_digest)
        content = _read_layer_file(blob, BUNDLE_IMAGES_LOCK_PATH)
        if content is None:
            continue
        lock = parse_images_lock(content, f"{ref}:{BUNDLE_IMAGES_LOCK_PATH}")
        return lock.image_refs()

    raise BundleError(ref, f"{BUNDLE_IMAGES_LOCK_PATH} not found in any layer")


def _image_manifest(ref: ImageReference, registry: RegistryClient) -> Manifest:
    manifest = registry.get_manifest(ref)
    if not manifest.is_index:
        return manifest

    children = manifest.child_digests()
    if not children:
        raise BundleError(str(ref), "image index has no manifests")
    return registry.get_manifest(ref.repository.digest(children[0]))


def _read_layer_file(blob: bytes, name: str) -> str | None:
    try:
        with tarfile.open(fileobj=io.BytesIO(blob), mode="r:*") as archive:
            for member in archive:
                if not member.isfile():
                    continue
                if _normalize(member.name) != name:
                    continue
                handle = archive.extractfile(member)
                if handle is None:
                    continue
                return handle.read().decode("utf-8")
    except tarfile.TarError:
        return None
    return None


def _normalize(member_name: str) -> str:
    while member_name.startswith("./"):
        member_name = member_name[2:]
    return member_name.lstrip("/")
