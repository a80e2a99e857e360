"""Migrate container images into a shared read-only store as squash-backed single layers."""

__version__ = "1.0.0"