"""Image reference and repository parsing helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass

from imgcopy.core.errors import ReferenceParseError

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")
_REGISTRY_RE = re.compile(r"^[a-zA-Z0-9.-]+(?::[0-9]+)?$|^\[[a-fA-F0-9:]+\](?::[0-9]+)?$")


@dataclass(frozen=True)
class Repository:
    registry: str
    path: str

    def __str__(self) -> str:
        return f"{self.registry}/{self.path}"

    def digest(self, digest: str) -> ImageReference:
        return ImageReference(repository=self, digest=digest)


@dataclass(frozen=True)
class ImageReference:
    repository: Repository
    tag: str = ""
    digest: str = ""

    @property
    def identifier(self) -> str:
        """Digest when pinned, tag otherwise; the manifest path component."""
        return self.digest or self.tag

    @property
    def is_digest(self) -> bool:
        return self.digest != ""

    def __str__(self) -> str:
        if self.digest:
            return f"{self.repository}@{self.digest}"
        return f"{self.repository}:{self.tag}"


def parse_repository(value: str, *, strict: bool = False) -> Repository:
    """Parse `[registry/]path` into a Repository.

    With `strict`, the registry host must be spelled out instead of falling
    back to Docker Hub.
    """
    raw = value.strip()
    if raw == "":
        raise ReferenceParseError("repository must not be empty")

    registry = ""
    path = raw
    first, sep, rest = raw.partition("/")
    if sep and _looks_like_registry(first):
        registry, path = first, rest

    if registry == "":
        if strict:
            raise ReferenceParseError(
                f"strict validation requires the registry to be explicitly defined: {value!r}"
            )
        registry = DEFAULT_REGISTRY
    elif registry == "docker.io":
        registry = DEFAULT_REGISTRY

    if not _REGISTRY_RE.match(registry):
        raise ReferenceParseError(f"registries must be valid RFC 3986 URI authorities: {value!r}")

    if registry == DEFAULT_REGISTRY and "/" not in path:
        path = f"library/{path}"

    for component in path.split("/"):
        if not _COMPONENT_RE.match(component):
            raise ReferenceParseError(
                "repository can only contain the characters `abcdefghijklmnopqrstuvwxyz0123456789_-./`: "
                f"{value!r}"
            )
    if len(path) > 255:
        raise ReferenceParseError(f"repository name too long: {value!r}")

    return Repository(registry=registry, path=path)


def parse_reference(value: str, *, strict: bool = False) -> ImageReference:
    """Parse `repository:tag` or `repository@digest`.

    A missing tag defaults to `latest` unless `strict` is set.
    """
    raw = value.strip()
    if "@" in raw:
        return parse_digest_reference(raw, strict=strict)

    name, tag = _split_tag(raw)
    if tag == "":
        if strict:
            raise ReferenceParseError(
                f"strict validation requires the tag to be explicitly defined: {value!r}"
            )
        tag = DEFAULT_TAG
    if not _TAG_RE.match(tag):
        raise ReferenceParseError(
            "tag can only contain the characters `abcdefghijklmnopqrstuvwxyz"
            f"ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-.`: {value!r}"
        )
    return ImageReference(repository=parse_repository(name, strict=strict), tag=tag)


def parse_digest_reference(value: str, *, strict: bool = False) -> ImageReference:
    raw = value.strip()
    name, sep, digest = raw.partition("@")
    if sep == "" or "@" in digest:
        raise ReferenceParseError(f"a digest must contain exactly one '@' separator: {value!r}")
    if not _DIGEST_RE.match(digest):
        raise ReferenceParseError(f"invalid digest {digest!r} in reference {value!r}")

    # `repo:tag@digest` pins the digest; the tag is informational only.
    name, _ = _split_tag(name)
    return ImageReference(repository=parse_repository(name, strict=strict), digest=digest)


def _split_tag(name: str) -> tuple[str, str]:
    last_slash = name.rfind("/")
    last_colon = name.rfind(":")
    if last_colon > last_slash:
        return name[:last_colon], name[last_colon + 1 :]
    return name, ""


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"
