from pathlib import Path

import pytest

from imgcopy.core.errors import LockParseError
from imgcopy.core.lockfile import (
    BundleLock,
    ImagesLock,
    parse_images_lock,
    read_bundle_lock,
    read_lock,
    read_lock_kind,
)


def _write(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content.strip() + "\n", encoding="utf-8")
    return path


def test_read_lock_returns_bundle_lock(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "bundle.lock.yml",
        """
apiVersion: imgpkg.carvel.dev/v1alpha1
kind: BundleLock
spec:
  image:
    image: reg.example.com/bundle@sha256:abc
    tag: v1
""",
    )

    lock = read_lock(path)

    assert isinstance(lock, BundleLock)
    assert lock.image == "reg.example.com/bundle@sha256:abc"
    assert lock.tag == "v1"
    assert lock.kind == "BundleLock"


def test_read_lock_returns_images_lock_in_order(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "images.lock.yml",
        """
kind: ImagesLock
spec:
  images:
  - image: reg.example.com/a@sha256:1
    annotations:
      kbld.carvel.dev/id: a
  - image: reg.example.com/b@sha256:2
  - image: reg.example.com/a@sha256:1
""",
    )

    lock = read_lock(path)

    assert isinstance(lock, ImagesLock)
    assert lock.image_refs() == [
        "reg.example.com/a@sha256:1",
        "reg.example.com/b@sha256:2",
        "reg.example.com/a@sha256:1",
    ]
    assert lock.images[0].annotations == {"kbld.carvel.dev/id": "a"}


def test_json_lock_files_are_accepted(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "lock.json",
        '{"kind": "BundleLock", "spec": {"image": {"image": "reg.example.com/b@sha256:1"}}}',
    )

    assert read_lock_kind(path) == "BundleLock"
    assert read_bundle_lock(path).image == "reg.example.com/b@sha256:1"


@pytest.mark.parametrize("kind_line", ["kind: PackageLock", ""])
def test_read_lock_rejects_unknown_kind(tmp_path: Path, kind_line: str) -> None:
    path = _write(tmp_path, "lock.yml", f"{kind_line}\nspec: {{}}")

    with pytest.raises(LockParseError, match="Unexpected lock kind"):
        read_lock(path)


def test_read_lock_names_offending_kind(tmp_path: Path) -> None:
    path = _write(tmp_path, "lock.yml", "kind: PackageLock\nspec: {}")

    with pytest.raises(LockParseError) as excinfo:
        read_lock(path)
    assert "PackageLock" in str(excinfo.value)


def test_bundle_lock_requires_image(tmp_path: Path) -> None:
    path = _write(tmp_path, "lock.yml", "kind: BundleLock\nspec:\n  image: {}")

    with pytest.raises(LockParseError, match="spec.image.image is required"):
        read_lock(path)


def test_missing_lock_file_raises_file_not_found(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        read_lock(tmp_path / "missing.yml")


def test_parse_images_lock_from_text() -> None:
    lock = parse_images_lock(
        "kind: ImagesLock\nspec:\n  images:\n  - image: reg.example.com/x@sha256:1\n",
        "bundle:.imgpkg/images.yml",
    )

    assert lock.path is None
    assert lock.image_refs() == ["reg.example.com/x@sha256:1"]
