"""Registry-to-registry and registry/tar image transfer."""

from __future__ import annotations

import io
import json
import logging
import tarfile
import tempfile
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, TypeVar

from imgcopy.core.errors import ArchiveError, DigestMismatchError
from imgcopy.core.image_set import UnprocessedImageURLs
from imgcopy.core.reference import Repository, parse_reference
from imgcopy.core.registry import Manifest, RegistryClient, compute_digest

T = TypeVar("T")
R = TypeVar("R")

ARCHIVE_INDEX = "index.json"
ARCHIVE_MANIFESTS_DIR = "manifests"
ARCHIVE_BLOBS_DIR = "blobs"


@dataclass(frozen=True)
class ArchivedManifest:
    digest: str
    media_type: str


@dataclass(frozen=True)
class ArchivedImage:
    ref: str
    digest: str
    media_type: str


class ImageSet:
    """Copies images between repositories, up to `concurrency` images at a time."""

    def __init__(self, concurrency: int, logger: logging.Logger) -> None:
        self.concurrency = max(1, concurrency)
        self.logger = logger

    def relocate(
        self,
        images: UnprocessedImageURLs,
        dest_repo: Repository,
        registry: RegistryClient,
    ) -> dict[str, str]:
        """Copy every image into `dest_repo`; returns source URL -> destination digest ref."""

        def _relocate(url: str) -> str:
            ref = parse_reference(url)
            manifest = registry.get_manifest(ref)
            dest = f"{dest_repo}@{manifest.digest}"
            self.logger.info("copying %s -> %s", url, dest)
            self._push_tree(registry, ref.repository, manifest, dest_repo)
            return dest

        urls = images.urls()
        results = run_bounded(_relocate, urls, self.concurrency)
        self.logger.info("copied %d image(s) into %s", len(urls), dest_repo)
        return dict(zip(urls, results))

    def _push_tree(
        self,
        registry: RegistryClient,
        source: Repository,
        manifest: Manifest,
        dest_repo: Repository,
    ) -> None:
        for child_digest in manifest.child_digests():
            child = registry.get_manifest(source.digest(child_digest))
            self._push_tree(registry, source, child, dest_repo)

        for blob_digest in manifest.blob_digests():
            self._copy_blob(registry, source, blob_digest, dest_repo)

        registry.put_manifest(dest_repo, manifest.digest, manifest.media_type, manifest.body)

    def _copy_blob(
        self,
        registry: RegistryClient,
        source: Repository,
        digest: str,
        dest_repo: Repository,
    ) -> None:
        if registry.blob_exists(dest_repo, digest):
            self.logger.debug("blob %s already present in %s", digest, dest_repo)
            return
        if registry.mount_blob(dest_repo, digest, source):
            self.logger.debug("mounted blob %s from %s", digest, source)
            return
        registry.put_blob(dest_repo, digest, fetch_verified_blob(registry, source, digest))


class TarImageSet:
    """Exports images into a tar archive and imports them back into a registry."""

    def __init__(self, concurrency: int, logger: logging.Logger) -> None:
        self.concurrency = max(1, concurrency)
        self.logger = logger

    def export(
        self,
        images: UnprocessedImageURLs,
        tar_path: str | Path,
        registry: RegistryClient,
    ) -> list[ArchivedImage]:
        output = Path(tar_path).expanduser()
        with tempfile.TemporaryDirectory(prefix="imgcopy-export-") as staging_raw:
            staging = Path(staging_raw)
            (staging / ARCHIVE_MANIFESTS_DIR).mkdir()
            (staging / ARCHIVE_BLOBS_DIR).mkdir()

            def _export(url: str) -> tuple[ArchivedImage, list[ArchivedManifest]]:
                self.logger.info("will export %s", url)
                ref = parse_reference(url)
                manifest = registry.get_manifest(ref)
                stored: list[ArchivedManifest] = []
                self._stage_tree(registry, ref.repository, manifest, staging, stored)
                return ArchivedImage(url, manifest.digest, manifest.media_type), stored

            results = run_bounded(_export, images.urls(), self.concurrency)

            archived = [image for image, _ in results]
            manifests: list[ArchivedManifest] = []
            seen: set[str] = set()
            for _, stored in results:
                for entry in stored:
                    if entry.digest not in seen:
                        seen.add(entry.digest)
                        manifests.append(entry)

            self.logger.info("writing %s", output)
            _write_archive(output, staging, archived, manifests)
        return archived

    def import_images(
        self,
        tar_path: str | Path,
        dest_repo: Repository,
        registry: RegistryClient,
    ) -> dict[str, str]:
        """Push every image in the archive into `dest_repo`; returns ref -> destination ref."""
        source = Path(tar_path).expanduser()
        if not source.is_file():
            raise FileNotFoundError(f"tar file not found: {source}")

        with tempfile.TemporaryDirectory(prefix="imgcopy-import-") as staging_raw:
            staging = Path(staging_raw)
            archived, manifests = _extract_archive(source, staging)

            blob_dir = staging / ARCHIVE_BLOBS_DIR
            blob_files = sorted(blob_dir.iterdir()) if blob_dir.is_dir() else []

            def _push_blob(path: Path) -> None:
                digest = _digest_from_filename(path.name)
                if registry.blob_exists(dest_repo, digest):
                    return
                data = path.read_bytes()
                _verify(digest, data)
                registry.put_blob(dest_repo, digest, data)

            run_bounded(_push_blob, blob_files, self.concurrency)

            for entry in manifests:
                body = (staging / ARCHIVE_MANIFESTS_DIR / _filename(entry.digest)).read_bytes()
                _verify(entry.digest, body)
                registry.put_manifest(dest_repo, entry.digest, entry.media_type, body)

        imported: dict[str, str] = {}
        for image in archived:
            dest = f"{dest_repo}@{image.digest}"
            self.logger.info("importing %s -> %s", image.ref, dest)
            imported[image.ref] = dest
        return imported

    def _stage_tree(
        self,
        registry: RegistryClient,
        source: Repository,
        manifest: Manifest,
        staging: Path,
        stored: list[ArchivedManifest],
    ) -> None:
        for child_digest in manifest.child_digests():
            child = registry.get_manifest(source.digest(child_digest))
            self._stage_tree(registry, source, child, staging, stored)

        for blob_digest in manifest.blob_digests():
            target = staging / ARCHIVE_BLOBS_DIR / _filename(blob_digest)
            if target.exists():
                continue
            _atomic_write(target, fetch_verified_blob(registry, source, blob_digest))

        _atomic_write(staging / ARCHIVE_MANIFESTS_DIR / _filename(manifest.digest), manifest.body)
        stored.append(ArchivedManifest(manifest.digest, manifest.media_type))


def run_bounded(func: Callable[[T], R], items: Iterable[T], concurrency: int) -> list[R]:
    """Run `func` over `items` with at most `concurrency` workers, preserving order.

    The first failure cancels work that has not started and is re-raised.
    """
    items = list(items)
    if not items:
        return []
    with ThreadPoolExecutor(max_workers=min(max(1, concurrency), len(items))) as executor:
        futures = [executor.submit(func, item) for item in items]
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in done:
            exc = future.exception()
            if exc is not None:
                for other in pending:
                    other.cancel()
                raise exc
        return [future.result() for future in futures]


def fetch_verified_blob(registry: RegistryClient, source: Repository, digest: str) -> bytes:
    data = registry.get_blob(source, digest)
    _verify(digest, data)
    return data


def _verify(expected: str, data: bytes) -> None:
    actual = compute_digest(data)
    if actual != expected:
        raise DigestMismatchError(expected, actual)


def _filename(digest: str) -> str:
    return digest.replace(":", "-", 1)


def _digest_from_filename(name: str) -> str:
    return name.replace("-", ":", 1)


def _atomic_write(target: Path, data: bytes) -> None:
    with tempfile.NamedTemporaryFile(
        "wb", dir=str(target.parent), prefix=".partial-", delete=False
    ) as tmp:
        tmp.write(data)
        tmp_path = Path(tmp.name)
    tmp_path.replace(target)


def _write_archive(
    output: Path,
    staging: Path,
    archived: list[ArchivedImage],
    manifests: list[ArchivedManifest],
) -> None:
    index = {
        "images": [
            {"ref": image.ref, "digest": image.digest, "mediaType": image.media_type}
            for image in archived
        ],
        "manifests": [
            {"digest": entry.digest, "mediaType": entry.media_type} for entry in manifests
        ],
    }
    payload = json.dumps(index, indent=2).encode("utf-8")

    output.parent.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(output, "w") as archive:
            info = tarfile.TarInfo(ARCHIVE_INDEX)
            info.size = len(payload)
            archive.addfile(info, io.BytesIO(payload))
            for entry in manifests:
                name = f"{ARCHIVE_MANIFESTS_DIR}/{_filename(entry.digest)}"
                archive.add(staging / name, arcname=name)
            for blob in sorted((staging / ARCHIVE_BLOBS_DIR).iterdir()):
                if blob.name.startswith(".partial-"):
                    continue
                archive.add(blob, arcname=f"{ARCHIVE_BLOBS_DIR}/{blob.name}")
    except OSError as exc:
        raise ArchiveError(f"writing tar {output}: {exc}") from exc


def _extract_archive(
    source: Path, staging: Path
) -> tuple[list[ArchivedImage], list[ArchivedManifest]]:
    index: dict | None = None
    try:
        with tarfile.open(source, "r:*") as archive:
            for member in archive:
                if member.name == ARCHIVE_INDEX:
                    handle = archive.extractfile(member)
                    if handle is not None:
                        index = json.loads(handle.read())
                    continue
                directory, _, name = member.name.partition("/")
                if (
                    not member.isfile()
                    or directory not in (ARCHIVE_MANIFESTS_DIR, ARCHIVE_BLOBS_DIR)
                    or name == ""
                    or "/" in name
                    or name.startswith(".")
                ):
                    continue
                handle = archive.extractfile(member)
                if handle is None:
                    continue
                target = staging / directory / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(handle.read())
    except (tarfile.TarError, ValueError) as exc:
        raise ArchiveError(f"reading tar {source}: {exc}") from exc

    if not isinstance(index, dict):
        raise ArchiveError(f"tar {source} has no {ARCHIVE_INDEX}; was it written by imgcopy?")

    try:
        archived = [
            ArchivedImage(str(item["ref"]), str(item["digest"]), str(item["mediaType"]))
            for item in index.get("images", [])
        ]
        manifests = [
            ArchivedManifest(str(item["digest"]), str(item["mediaType"]))
            for item in index.get("manifests", [])
        ]
    except (KeyError, TypeError) as exc:
        raise ArchiveError(f"malformed {ARCHIVE_INDEX} in {source}: {exc}") from exc
    return archived, manifests
