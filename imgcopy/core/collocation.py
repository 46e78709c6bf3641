"""Prefer copies of bundle images that already live in the bundle's repository."""

from __future__ import annotations

import logging

from imgcopy.core.errors import ReferenceParseError, RegistryError
from imgcopy.core.image_set import UnprocessedImageURL, UnprocessedImageURLs
from imgcopy.core.reference import parse_digest_reference
from imgcopy.core.registry import RegistryClient

logger = logging.getLogger(__name__)


def check_bundle_repo_for_collocated_images(
    found_images: UnprocessedImageURLs,
    bundle_url: str,
    registry: RegistryClient,
) -> UnprocessedImageURLs:
    """Rewrite each image to `<bundle repo>@<digest>` when that copy exists.

    The bundle itself is always the first entry of the result. Only
    existence is probed; nothing is written to any registry.
    """
    checked = UnprocessedImageURLs([UnprocessedImageURL(bundle_url)])
    bundle_repo = bundle_url.split("@")[0]

    for image in found_images.all():
        parts = image.url.split("@")
        if len(parts) != 2:
            raise ReferenceParseError(f"Parsing image URL: {image.url}")
        digest = parts[1]

        new_url = f"{bundle_repo}@{digest}"
        candidate = parse_digest_reference(new_url, strict=True)

        try:
            registry.head_manifest(candidate)
        except RegistryError as exc:
            logger.debug("%s not collocated with bundle: %s", image.url, exc)
            checked.add(image)
        else:
            logger.debug("Using collocated %s for %s", new_url, image.url)
            checked.add(UnprocessedImageURL(new_url))

    return checked
