"""Source/destination validation and copy orchestration."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field

from imgcopy.core.collocation import check_bundle_repo_for_collocated_images
from imgcopy.core.errors import ConfigurationError, ReferenceParseError
from imgcopy.core.reference import Repository, parse_repository
from imgcopy.core.registry import RegistryClient, RegistryOptions
from imgcopy.core.resolve import get_unprocessed_image_urls
from imgcopy.core.transfer import ImageSet, TarImageSet

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5


class CopyMode(enum.Enum):
    IMPORT_FROM_TAR = "import-from-tar"
    EXPORT_TO_TAR = "export-to-tar"
    RELOCATE = "relocate"


@dataclass(frozen=True)
class CopyOptions:
    lock_src: str = ""
    bundle_src: str = ""
    image_src: str = ""
    tar_src: str = ""
    repo_dst: str = ""
    tar_dst: str = ""
    concurrency: int = DEFAULT_CONCURRENCY
    registry: RegistryOptions = field(default_factory=RegistryOptions)

    @property
    def is_tar_src(self) -> bool:
        return self.tar_src != ""

    @property
    def is_repo_src(self) -> bool:
        return self.image_src != "" or self.bundle_src != "" or self.lock_src != ""

    @property
    def is_tar_dst(self) -> bool:
        return self.tar_dst != ""

    @property
    def is_repo_dst(self) -> bool:
        return self.repo_dst != ""

    def has_one_src(self) -> bool:
        sources = [self.lock_src, self.tar_src, self.bundle_src, self.image_src]
        return sum(1 for value in sources if value != "") == 1

    def has_one_dst(self) -> bool:
        return self.is_repo_dst != self.is_tar_dst


@dataclass(frozen=True)
class CopyPlan:
    mode: CopyMode
    dest_repo: Repository | None = None


def select_mode(options: CopyOptions) -> CopyPlan:
    """Validate the flag combination and pick the transfer path.

    Runs before any registry or filesystem access.
    """
    if not options.has_one_src():
        raise ConfigurationError(
            "Expected either --lock, --bundle (-b), --image (-i), or --from-tar as a source"
        )
    if not options.has_one_dst():
        raise ConfigurationError("Expected either --to-tar or --to-repo")
    if options.is_tar_src and options.is_tar_dst:
        raise ConfigurationError("Cannot use tar src with tar dst")
    if options.concurrency < 1:
        raise ConfigurationError(f"--concurrency must be positive, got {options.concurrency}")

    dest_repo = None
    if options.is_repo_dst:
        try:
            dest_repo = parse_repository(options.repo_dst)
        except ReferenceParseError as exc:
            raise ConfigurationError(f"Building import repository ref: {exc}") from exc

    if options.is_tar_src:
        return CopyPlan(CopyMode.IMPORT_FROM_TAR, dest_repo)
    if options.is_tar_dst:
        return CopyPlan(CopyMode.EXPORT_TO_TAR)
    return CopyPlan(CopyMode.RELOCATE, dest_repo)


def execute_copy(
    options: CopyOptions,
    registry: RegistryClient,
    *,
    image_set: ImageSet | None = None,
    tar_image_set: TarImageSet | None = None,
    transfer_logger: logging.Logger | None = None,
) -> CopyMode:
    plan = select_mode(options)

    copy_logger = transfer_logger or logging.getLogger("imgcopy.copy")
    image_set = image_set or ImageSet(options.concurrency, copy_logger)
    tar_image_set = tar_image_set or TarImageSet(options.concurrency, copy_logger)

    if plan.mode is CopyMode.IMPORT_FROM_TAR:
        assert plan.dest_repo is not None
        tar_image_set.import_images(options.tar_src, plan.dest_repo, registry)
        return plan.mode

    unprocessed, bundle_url = get_unprocessed_image_urls(
        registry,
        lock_src=options.lock_src,
        bundle_src=options.bundle_src,
        image_src=options.image_src,
    )
    if bundle_url != "":
        unprocessed = check_bundle_repo_for_collocated_images(unprocessed, bundle_url, registry)
    logger.debug("Resolved %d image(s): %s", len(unprocessed), unprocessed.urls())

    if plan.mode is CopyMode.EXPORT_TO_TAR:
        tar_image_set.export(unprocessed, options.tar_dst, registry)
    else:
        assert plan.dest_repo is not None
        image_set.relocate(unprocessed, plan.dest_repo, registry)
    return plan.mode
