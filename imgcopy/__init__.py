"""Relocate OCI images and bundles between registries and tar archives."""

__version__ = "0.1.0"
