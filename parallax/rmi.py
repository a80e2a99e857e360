"""Removing a migrated image and its squash side-cars from read-only storage."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import Config
from .imageutil import ImageNotFoundError, find_image, load_aliases
from .mirror import Mirror, MirrorError
from .squash import SquashError, remove_squash_files
from .store import Store, StoreError, open_store

log = logging.getLogger(__name__)


@dataclass
class RoImage:
    """An image in read-only storage together with its overlay link."""

    id: str
    top_layer: str
    link: str


def get_image_rmi(store: Store, ro_storage_path, name: str, aliases: Mapping[str, str]) -> RoImage:
    """Locate ``name`` in ``store`` and read its top layer's overlay link."""
    img = find_image(store, name, aliases)
    link_path = Path(ro_storage_path) / "overlay" / img.top_layer / "link"
    return RoImage(id=img.id, top_layer=img.top_layer, link=link_path.read_text())


def _remove(store: Store, ro_storage_path: str, name: str, aliases: Mapping[str, str]) -> None:
    try:
        img = get_image_rmi(store, ro_storage_path, name, aliases)
    except (ImageNotFoundError, ValueError, OSError) as err:
        log.error("Could not locate image %s: %s", name, err)
        return

    log.info("Removing squash for %s (link=%s)", name, img.link)
    try:
        remove_squash_files(ro_storage_path, img.link)
    except SquashError as err:
        log.warning("Error removing squash side-cars for layer %s: %s", img.link, err)

    log.info("Removing Image from store %s", img.id)
    try:
        store.delete_image(img.id)
    except StoreError as err:
        log.error("Failed to delete image %s via storage: %s", img.id, err)
        return
    log.info("Removal successfully completed for image: %s", name)


def run_rmi(config: Config) -> None:
    """Remove ``config.image`` from read-only storage; a missing image is only logged."""
    log.info("Starting removal of image: %s", config.image)
    log.debug(
        "Podman Root: %s, Read-only Storage Path: %s",
        config.podman_root,
        config.ro_storage_path,
    )
    aliases = load_aliases()
    mirror = Mirror(config.ro_storage_path)
    mirror_path = mirror.create()
    log.info("Copy mirror of %s at %s", config.ro_storage_path, mirror_path)
    try:
        with open_store(mirror_path, "rmi-RoStore-*") as store:
            log.info("Opened store with: %s, %s", mirror_path, store.run_root)
            _remove(store, mirror_path, config.image, aliases)
    finally:
        try:
            mirror.sync_back()
        except MirrorError as err:
            log.error("Mirror sync back failed: %s", err)
        log.info("Teardown of store completed")