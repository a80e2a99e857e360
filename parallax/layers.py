"""Building the single flattened layer and its image metadata."""

from __future__ import annotations

import hashlib
import io
import json
import os
import tarfile
from pathlib import Path

MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"
LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar"


def sha256_digest(data: bytes) -> str:
    """Canonical ``sha256:<hex>`` digest of ``data``."""
    return "sha256:" + hashlib.sha256(data).hexdigest()


def safe_name(name: str) -> str:
    """Make an image name usable as part of a file name."""
    return name.replace("/", "-").replace(":", "-")


def make_dummy_dir(directory, image_name: str, image_id: str) -> str:
    """Write the migration marker into ``directory`` and return the marker's path."""
    marker = Path(directory) / f".migrationv3-{safe_name(image_name)}"
    marker.write_text(image_id + "\n")
    marker.chmod(0o644)
    return str(marker)


def tar_directory(directory) -> bytes:
    """Uncompressed tar of the contents of ``directory``, without the directory itself."""
    root = Path(directory)
    if not root.is_dir():
        raise NotADirectoryError(f"{directory} is not a directory")
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for entry in sorted(os.listdir(root)):
            tar.add(root / entry, arcname=entry)
    return buf.getvalue()


def flatten_via_tar(directory, layer_id: str) -> tuple[str, int]:
    """Digest and byte size of the tar stream of ``directory``."""
    try:
        data = tar_directory(directory)
    except OSError as err:
        raise OSError(f"create tar from {directory}: {err}") from err
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
            for _ in tar:
                pass
    except tarfile.TarError as err:
        raise ValueError(f"layer {layer_id}: read tar: {err}") from err
    return sha256_digest(data), len(data)


def _compact(obj) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode()


def generate_manifest_and_config(
    manifest_bytes: bytes,
    config_bytes: bytes,
    layer_digest: str,
    size: int,
    source_id: str,
) -> tuple[bytes, bytes, str]:
    """Rewrite an image config and manifest to describe a single layer.

    Returns the new config blob, the new manifest blob and the manifest digest.
    """
    try:
        original_manifest = json.loads(manifest_bytes)
    except (ValueError, TypeError) as err:
        raise ValueError(f"parsing src manifest: {err}") from err
    try:
        config = json.loads(config_bytes)
    except (ValueError, TypeError) as err:
        raise ValueError(f"parsing src config: {err}") from err
    if not isinstance(original_manifest, dict):
        raise ValueError("parsing src manifest: not a JSON object")
    if not isinstance(config, dict):
        raise ValueError("parsing src config: not a JSON object")

    config["rootfs"] = {"type": "layers", "diff_ids": [layer_digest]}
    history = list(config.get("history") or [])
    history.append(
        {"created_by": "MV3", "comment": f"Flattened layers from image {source_id}"}
    )
    config["history"] = history
    cfg_blob = _compact(config)

    manifest: dict = {
        "schemaVersion": 2,
        "mediaType": MANIFEST_MEDIA_TYPE,
        "config": {
            "mediaType": CONFIG_MEDIA_TYPE,
            "digest": sha256_digest(cfg_blob),
            "size": len(cfg_blob),
        },
        "layers": [
            {"mediaType": LAYER_MEDIA_TYPE, "digest": layer_digest, "size": size}
        ],
    }
    annotations = original_manifest.get("annotations")
    if annotations:
        manifest["annotations"] = annotations
    man_blob = _compact(manifest)
    return cfg_blob, man_blob, sha256_digest(man_blob)