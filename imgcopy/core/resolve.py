"""Resolve a registry-backed copy source into the images it covers."""

from __future__ import annotations

import logging
from pathlib import Path

from imgcopy.core.bundle import get_referenced_images, is_bundle
from imgcopy.core.errors import ConfigurationError, MismatchError
from imgcopy.core.image_set import UnprocessedImageURL, UnprocessedImageURLs
from imgcopy.core.lockfile import BundleLock, ImagesLock, read_lock
from imgcopy.core.registry import RegistryClient

logger = logging.getLogger(__name__)

EXPECTED_IMAGE_FLAG_MSG = (
    "Expected image flag when given an image reference. "
    "Please run with -i instead of -b, or use -b with a bundle reference"
)
EXPECTED_BUNDLE_FLAG_MSG = (
    "Expected bundle flag when copying a bundle, please use -b instead of -i"
)


def get_unprocessed_image_urls(
    registry: RegistryClient,
    *,
    lock_src: str = "",
    bundle_src: str = "",
    image_src: str = "",
) -> tuple[UnprocessedImageURLs, str]:
    """Return the images to copy and the bundle reference ("" when not a bundle).

    The bundle reference itself is not part of the returned set; it is only
    added by the collocation pass.
    """
    if lock_src:
        return _from_lock(Path(lock_src), registry)
    if image_src:
        return _from_image(image_src, registry), ""
    if bundle_src:
        return _from_bundle(bundle_src, registry), bundle_src
    raise ConfigurationError("Expected either --lock, --bundle (-b), or --image (-i) as a source")


def _from_lock(path: Path, registry: RegistryClient) -> tuple[UnprocessedImageURLs, str]:
    lock = read_lock(path)
    if isinstance(lock, BundleLock):
        logger.debug("Lock %s pins bundle %s", path, lock.image)
        return _from_bundle(lock.image, registry), lock.image
    if isinstance(lock, ImagesLock):
        unprocessed = UnprocessedImageURLs()
        for image in lock.image_refs():
            unprocessed.add(UnprocessedImageURL(image))
        return unprocessed, ""
    raise AssertionError(f"unhandled lock record: {lock!r}")


def _from_image(image_ref: str, registry: RegistryClient) -> UnprocessedImageURLs:
    if is_bundle(image_ref, registry):
        raise MismatchError(EXPECTED_BUNDLE_FLAG_MSG)
    return UnprocessedImageURLs([UnprocessedImageURL(image_ref)])


def _from_bundle(bundle_ref: str, registry: RegistryClient) -> UnprocessedImageURLs:
    if not is_bundle(bundle_ref, registry):
        raise MismatchError(EXPECTED_IMAGE_FLAG_MSG)

    unprocessed = UnprocessedImageURLs()
    for image in get_referenced_images(bundle_ref, registry):
        unprocessed.add(UnprocessedImageURL(image))
    return unprocessed
