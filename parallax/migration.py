"""Flattening an image into a single squash-backed layer in read-only storage."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from contextlib import ExitStack, contextmanager
from dataclasses import replace

from .config import Config
from .imageutil import ImageNotFoundError, canonical_image_name, find_image, load_aliases
from .layers import flatten_via_tar, generate_manifest_and_config, make_dummy_dir, sha256_digest
from .mirror import Mirror, MirrorError
from .squash import create_squash_sidecar, is_migrated, read_overlay_link
from .store import MANIFEST_KEY, Image, Store, StoreError, open_store
from .tempdir import temp_dir

log = logging.getLogger(__name__)


class MigrationError(Exception):
    """Raised when an image cannot be migrated."""


def resolve_image_names(name: str, aliases: Mapping[str, str]) -> tuple[str, list[str]]:
    """The fully qualified name of ``name`` and every name the new image should carry."""
    log.info("Resolving full name")
    try:
        fq_name = canonical_image_name(name, aliases)
    except ValueError as err:
        raise MigrationError(f"resolve canonical name: {err}") from err
    names = [fq_name]
    if fq_name != name:
        names.append(name)
    return fq_name, names


def check_if_migrated(name: str, ro_storage_path, store: Store, aliases: Mapping[str, str]) -> bool:
    """True if ``name`` is in ``store`` with its squash file and side-car in place."""
    log.debug("Checking if image is migrated")
    try:
        img = find_image(store, name, aliases)
    except ImageNotFoundError:
        log.debug("Image %s not found", name)
        return False
    log.debug("Found image %s at %s", name, ro_storage_path)
    if not img.top_layer:
        raise MigrationError(f"image {name} has no top layer (!?)")
    migrated = is_migrated(ro_storage_path, img.top_layer)
    if migrated:
        log.debug("Image fully migrated.")
    return migrated


def attach_metadata(
    store: Store,
    image: Image,
    config_blob: bytes,
    manifest_blob: bytes,
    src_image: Image,
    src_store: Store,
) -> None:
    """Store the new manifest and config on ``image`` and copy the source's other blobs."""
    log.debug("Attaching manifest")
    store.set_image_big_data(image.id, MANIFEST_KEY, manifest_blob)

    log.debug("Attaching config")
    cfg_digest = sha256_digest(config_blob)
    store.set_image_big_data(image.id, cfg_digest, config_blob)

    log.debug("Attaching all other BigData from srcImage")
    for key in src_image.big_data_names:
        if key == cfg_digest or key.startswith(MANIFEST_KEY):
            continue
        log.debug("Attaching BigData blob %s as-is.", key)
        data = src_store.image_big_data(src_image.id, key)
        store.set_image_big_data(image.id, key, data)


@contextmanager
def _mirrored(src_dir) -> Iterator[str]:
    mirror = Mirror(src_dir)
    path = mirror.create()
    log.info("Copy mirror of %s at %s", src_dir, path)
    try:
        yield path
    finally:
        try:
            mirror.sync_back()
        except MirrorError as err:
            log.error("Mirror sync back failed: %s", err)


@contextmanager
def _mounted(store: Store, image_id: str) -> Iterator[str]:
    log.debug("Mounting image")
    try:
        mount_point = store.mount_image(image_id)
    except StoreError as err:
        raise MigrationError(f"failed to mount image: {err}") from err
    try:
        yield mount_point
    finally:
        store.unmount_image(image_id)


def _source_blobs(src_store: Store, src_image: Image) -> tuple[bytes, bytes]:
    try:
        manifest_bytes = src_store.image_big_data(src_image.id, MANIFEST_KEY)
    except StoreError as err:
        raise MigrationError(f"get src manifest: {err}") from err
    try:
        config_digest = json.loads(manifest_bytes)["config"]["digest"]
    except (ValueError, TypeError, KeyError) as err:
        raise MigrationError(f"parsing src manifest: {err}") from err
    try:
        config_bytes = src_store.image_big_data(src_image.id, str(config_digest))
    except StoreError as err:
        raise MigrationError(f"get src config: {err}") from err
    return manifest_bytes, config_bytes


def run_migration(config: Config) -> Image | None:
    """Migrate ``config.image``; returns the new image, or None if already migrated."""
    log.info("Starting migration for image: %s", config.image)
    log.debug(
        "Podman Root: %s, Read-only Storage Path: %s, mksquashfs Path: %s",
        config.podman_root,
        config.ro_storage_path,
        config.mksquashfs_path,
    )
    aliases = load_aliases()
    name = config.image
    _, names = resolve_image_names(name, aliases)

    with ExitStack() as stack:
        log.info("Setting up SRC Store")
        src_store = stack.enter_context(open_store(config.podman_root, "src-runroot-*"))

        mirror_path = stack.enter_context(_mirrored(config.ro_storage_path))
        cfg = replace(config, ro_storage_path=mirror_path)
        log.info("Setting up scratch Store")
        scratch = stack.enter_context(open_store(mirror_path, "scratch-runroot-*"))

        if check_if_migrated(name, mirror_path, scratch, aliases):
            log.info("Image already migrated. Nothing to do.")
            return None

        log.info("Mounting source image")
        src_img = find_image(src_store, name, aliases)
        mount_point = stack.enter_context(_mounted(src_store, src_img.id))

        log.info("Creating a dummy layer diff dir")
        dummy_dir = stack.enter_context(temp_dir("migrate-*"))
        make_dummy_dir(dummy_dir, name, src_img.id)
        layer_digest, size = flatten_via_tar(dummy_dir, "rootfs")

        log.info("Put single dummy layer")
        try:
            new_layer = scratch.put_layer(dummy_dir, layer_digest, size)
        except StoreError as err:
            raise MigrationError(f"failed to put flattened layer: {err}") from err

        log.info("Reading overlay link from %s", mirror_path)
        link = read_overlay_link(mirror_path, new_layer.id)
        create_squash_sidecar(mount_point, link, cfg)

        manifest_bytes, config_bytes = _source_blobs(src_store, src_img)
        try:
            cfg_blob, man_blob, man_digest = generate_manifest_and_config(
                manifest_bytes, config_bytes, layer_digest, size, src_img.id
            )
        except ValueError as err:
            raise MigrationError(str(err)) from err

        try:
            flat = scratch.create_image(
                names, new_layer.id, src_img.names, src_img.created, man_digest
            )
        except StoreError as err:
            raise MigrationError(f"create flattened image: {err}") from err

        attach_metadata(scratch, flat, cfg_blob, man_blob, src_img, src_store)
        log.info("Migration successfully completed for image: %s", flat.id)
        return flat