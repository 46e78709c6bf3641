from __future__ import annotations

import io
import json
import tarfile

import pytest

from imgcopy.core.bundle import BUNDLE_CONFIG_LABEL
from imgcopy.core.errors import NotFoundError
from imgcopy.core.reference import ImageReference, Repository, parse_repository
from imgcopy.core.registry import OCI_INDEX, OCI_MANIFEST, Descriptor, Manifest, compute_digest


class FakeRegistry:
    """In-memory registry implementing the RegistryClient protocol."""

    def __init__(self) -> None:
        self.manifests: dict[tuple[Repository, str], Manifest] = {}
        self.blobs: dict[tuple[Repository, str], bytes] = {}
        self.calls: list[tuple[str, str]] = []

    # ----- RegistryClient -----

    def get_manifest(self, ref: ImageReference) -> Manifest:
        self.calls.append(("get_manifest", str(ref)))
        try:
            return self.manifests[(ref.repository, ref.identifier)]
        except KeyError:
            raise NotFoundError(f"manifest {ref}") from None

    def head_manifest(self, ref: ImageReference) -> Descriptor:
        self.calls.append(("head_manifest", str(ref)))
        manifest = self.manifests.get((ref.repository, ref.identifier))
        if manifest is None:
            raise NotFoundError(f"manifest {ref}")
        return Descriptor(manifest.media_type, manifest.digest, len(manifest.body))

    def get_blob(self, repository: Repository, digest: str) -> bytes:
        self.calls.append(("get_blob", f"{repository}@{digest}"))
        try:
            return self.blobs[(repository, digest)]
        except KeyError:
            raise NotFoundError(f"blob {repository}@{digest}") from None

    def blob_exists(self, repository: Repository, digest: str) -> bool:
        self.calls.append(("blob_exists", f"{repository}@{digest}"))
        return (repository, digest) in self.blobs

    def put_blob(self, repository: Repository, digest: str, data: bytes) -> None:
        self.calls.append(("put_blob", f"{repository}@{digest}"))
        assert compute_digest(data) == digest
        self.blobs[(repository, digest)] = data

    def mount_blob(self, repository: Repository, digest: str, source: Repository) -> bool:
        self.calls.append(("mount_blob", f"{repository}@{digest}"))
        if source.registry != repository.registry or (source, digest) not in self.blobs:
            return False
        self.blobs[(repository, digest)] = self.blobs[(source, digest)]
        return True

    def put_manifest(
        self, repository: Repository, reference: str, media_type: str, body: bytes
    ) -> str:
        self.calls.append(("put_manifest", f"{repository}@{reference}"))
        digest = compute_digest(body)
        manifest = Manifest(media_type=media_type, digest=digest, body=body)
        self.manifests[(repository, reference)] = manifest
        self.manifests[(repository, digest)] = manifest
        return digest

    # ----- test helpers -----

    def calls_named(self, name: str) -> list[str]:
        return [target for op, target in self.calls if op == name]

    def push_image(
        self,
        repo: str,
        *,
        labels: dict[str, str] | None = None,
        files: dict[str, str] | None = None,
        tag: str = "",
        seed: str = "",
    ) -> str:
        """Store an image and return its digest reference."""
        repository = parse_repository(repo)
        config = json.dumps(
            {"architecture": "amd64", "os": "linux", "config": {"Labels": labels or {}}}
        ).encode("utf-8")
        layer = make_layer(files or {"seed.txt": seed or repo})

        config_digest = self._store_blob(repository, config)
        layer_digest = self._store_blob(repository, layer)
        body = json.dumps(
            {
                "schemaVersion": 2,
                "mediaType": OCI_MANIFEST,
                "config": {
                    "mediaType": "application/vnd.oci.image.config.v1+json",
                    "digest": config_digest,
                    "size": len(config),
                },
                "layers": [
                    {
                        "mediaType": "application/vnd.oci.image.layer.v1.tar+gzip",
                        "digest": layer_digest,
                        "size": len(layer),
                    }
                ],
            },
            sort_keys=True,
        ).encode("utf-8")
        return self._store_manifest(repository, OCI_MANIFEST, body, tag)

    def push_index(self, repo: str, children: list[str], *, tag: str = "") -> str:
        repository = parse_repository(repo)
        entries = []
        for child in children:
            digest = child.split("@", 1)[1]
            manifest = self.manifests[(repository, digest)]
            entries.append(
                {"mediaType": manifest.media_type, "digest": digest, "size": len(manifest.body)}
            )
        body = json.dumps(
            {"schemaVersion": 2, "mediaType": OCI_INDEX, "manifests": entries}, sort_keys=True
        ).encode("utf-8")
        return self._store_manifest(repository, OCI_INDEX, body, tag)

    def push_bundle(self, repo: str, images: list[str], *, tag: str = "") -> str:
        lock = "apiVersion: imgpkg.carvel.dev/v1alpha1\nkind: ImagesLock\nspec:\n  images:\n"
        for image in images:
            lock += f"  - image: {image}\n"
        return self.push_image(
            repo,
            labels={BUNDLE_CONFIG_LABEL: "true"},
            files={".imgpkg/images.yml": lock, "config/app.yml": "app: demo\n"},
            tag=tag,
        )

    def copy_manifest(self, source_ref: str, dest_repo: str) -> str:
        """Place an existing manifest under another repository (same digest)."""
        source_repo, digest = source_ref.split("@", 1)
        manifest = self.manifests[(parse_repository(source_repo), digest)]
        self.manifests[(parse_repository(dest_repo), digest)] = manifest
        return f"{dest_repo}@{digest}"

    def _store_blob(self, repository: Repository, data: bytes) -> str:
        digest = compute_digest(data)
        self.blobs[(repository, digest)] = data
        return digest

    def _store_manifest(
        self, repository: Repository, media_type: str, body: bytes, tag: str
    ) -> str:
        digest = compute_digest(body)
        manifest = Manifest(media_type=media_type, digest=digest, body=body)
        self.manifests[(repository, digest)] = manifest
        if tag:
            self.manifests[(repository, tag)] = manifest
        return f"{repository}@{digest}"


def make_layer(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mtime = 0
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()
