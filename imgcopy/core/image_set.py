"""Ordered, de-duplicated collection of image references awaiting transfer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator


@dataclass(frozen=True)
class UnprocessedImageURL:
    url: str


class UnprocessedImageURLs:
    """Image URLs keyed by their literal string.

    The first insertion of a URL wins and iteration follows insertion order,
    so processing order is reproducible across runs.
    """

    def __init__(self, images: Iterable[UnprocessedImageURL] = ()) -> None:
        self._urls: dict[str, UnprocessedImageURL] = {}
        for image in images:
            self.add(image)

    def add(self, image: UnprocessedImageURL) -> None:
        self._urls.setdefault(image.url, image)

    def all(self) -> list[UnprocessedImageURL]:
        return list(self._urls.values())

    def urls(self) -> list[str]:
        return list(self._urls)

    def __contains__(self, url: object) -> bool:
        if isinstance(url, UnprocessedImageURL):
            url = url.url
        return url in self._urls

    def __iter__(self) -> Iterator[UnprocessedImageURL]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._urls)

    def __repr__(self) -> str:
        return f"UnprocessedImageURLs({self.urls()!r})"
