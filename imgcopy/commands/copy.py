"""CLI parser for the copy command."""

from __future__ import annotations

import argparse

from imgcopy.core.config import CopySettings
from imgcopy.core.copy_ops import CopyOptions, execute_copy
from imgcopy.core.registry import Registry, RegistryOptions


def register_parser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser(
        "copy",
        help="Copy a bundle, image or lock from one location to another",
    )

    source = parser.add_argument_group("source (exactly one)")
    source.add_argument("--lock", default="", help="BundleLock or ImagesLock file to relocate")
    source.add_argument("-b", "--bundle", default="", help="Bundle reference to relocate")
    source.add_argument("-i", "--image", default="", help="Image reference to relocate")
    source.add_argument("--from-tar", default="", help="Tar archive previously written by --to-tar")

    dest = parser.add_argument_group("destination (exactly one)")
    dest.add_argument("--to-repo", default="", help="Repository to copy into (e.g. reg.io/ns/app)")
    dest.add_argument("--to-tar", default="", help="Tar archive path to write")

    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Concurrent image transfers (default: IMGCOPY_CONCURRENCY or 5)",
    )

    registry = parser.add_argument_group("registry")
    registry.add_argument("--registry-username", help="Registry username")
    registry.add_argument("--registry-password", help="Registry password")
    registry.add_argument("--registry-token", help="Registry bearer token")
    registry.add_argument(
        "--registry-anon",
        action="store_true",
        default=None,
        help="Skip registry authentication",
    )
    registry.add_argument(
        "--registry-insecure",
        action="store_true",
        default=None,
        help="Talk to registries over plain HTTP",
    )
    registry.add_argument("--registry-ca-cert-path", help="CA bundle for registry TLS")
    registry.add_argument(
        "--registry-verify-certs",
        dest="registry_verify_certs",
        action="store_true",
        help="Verify registry TLS certificates",
    )
    registry.add_argument(
        "--no-registry-verify-certs",
        dest="registry_verify_certs",
        action="store_false",
        help="Do not verify registry TLS certificates",
    )
    parser.set_defaults(registry_verify_certs=None, func=run)


def build_options(args: argparse.Namespace, settings: CopySettings) -> CopyOptions:
    defaults = RegistryOptions.from_settings(settings)
    registry = RegistryOptions(
        username=_pick(args.registry_username, defaults.username),
        password=_pick(args.registry_password, defaults.password),
        token=_pick(args.registry_token, defaults.token),
        anon=_pick(args.registry_anon, defaults.anon),
        insecure=_pick(args.registry_insecure, defaults.insecure),
        verify_certs=_pick(args.registry_verify_certs, defaults.verify_certs),
        ca_cert_path=_pick(args.registry_ca_cert_path, defaults.ca_cert_path),
        timeout=defaults.timeout,
    )
    return CopyOptions(
        lock_src=args.lock.strip(),
        bundle_src=args.bundle.strip(),
        image_src=args.image.strip(),
        tar_src=args.from_tar.strip(),
        repo_dst=args.to_repo.strip(),
        tar_dst=args.to_tar.strip(),
        concurrency=_pick(args.concurrency, settings.CONCURRENCY),
        registry=registry,
    )


def run(args: argparse.Namespace, settings: CopySettings) -> int:
    options = build_options(args, settings)
    with Registry(options.registry) as registry:
        execute_copy(options, registry)
    return 0


def _pick(value, default):
    return default if value is None else value
