import pytest

from imgcopy.core.bundle import get_referenced_images, is_bundle
from imgcopy.core.errors import BundleError, NotFoundError


def test_is_bundle_detects_bundle_label(fake_registry) -> None:
    bundle = fake_registry.push_bundle("reg.example.com/bundles/app", ["reg.example.com/x@sha256:1"])
    image = fake_registry.push_image("reg.example.com/images/plain")

    assert is_bundle(bundle, fake_registry) is True
    assert is_bundle(image, fake_registry) is False


def test_is_bundle_resolves_tags_and_indexes(fake_registry) -> None:
    bundle = fake_registry.push_bundle("reg.example.com/bundles/app", [])
    fake_registry.push_index("reg.example.com/bundles/app", [bundle], tag="v1")

    assert is_bundle("reg.example.com/bundles/app:v1", fake_registry) is True


def test_is_bundle_propagates_registry_errors(fake_registry) -> None:
    with pytest.raises(NotFoundError):
        is_bundle("reg.example.com/missing:v1", fake_registry)


def test_referenced_images_keep_declared_order_and_duplicates(fake_registry) -> None:
    images = [
        "reg.example.com/y@sha256:" + "2" * 64,
        "reg.example.com/x@sha256:" + "1" * 64,
        "reg.example.com/y@sha256:" + "2" * 64,
    ]
    bundle = fake_registry.push_bundle("reg.example.com/bundles/app", images)

    assert get_referenced_images(bundle, fake_registry) == images


def test_referenced_images_requires_images_lock(fake_registry) -> None:
    image = fake_registry.push_image(
        "reg.example.com/bundles/broken",
        labels={"dev.carvel.imgpkg.bundle": "true"},
        files={"config/app.yml": "app: demo\n"},
    )

    with pytest.raises(BundleError, match=".imgpkg/images.yml not found"):
        get_referenced_images(image, fake_registry)
