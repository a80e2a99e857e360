"""A small overlay-style image and layer store kept on disk as JSON records."""

from __future__ import annotations

import base64
import json
import logging
import secrets
import shutil
import string
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path

from .tempdir import temp_dir

log = logging.getLogger(__name__)

MANIFEST_KEY = "manifest"
_LINK_ALPHABET = string.ascii_uppercase + string.digits


class StoreError(Exception):
    """Raised when a store operation cannot be carried out."""


@dataclass
class Layer:
    id: str
    parent: str | None = None
    uncompressed_digest: str = ""
    original_size: int = 0


@dataclass
class Image:
    id: str
    names: list[str] = field(default_factory=list)
    top_layer: str = ""
    names_history: list[str] = field(default_factory=list)
    created: str = ""
    digest: str = ""
    big_data_names: list[str] = field(default_factory=list)


class Store:
    """Images and layers under ``graph_root``; mounts are materialised under ``run_root``."""

    def __init__(self, graph_root, run_root):
        self.graph_root = Path(graph_root)
        self.run_root = Path(run_root)
        for sub in ("overlay/l", "overlay-layers", "overlay-images"):
            (self.graph_root / sub).mkdir(parents=True, exist_ok=True)
        self.run_root.mkdir(parents=True, exist_ok=True)
        self._closed = False

    # -- persistence -------------------------------------------------
    @property
    def _images_file(self) -> Path:
        return self.graph_root / "overlay-images" / "images.json"

    @property
    def _layers_file(self) -> Path:
        return self.graph_root / "overlay-layers" / "layers.json"

    def _check_open(self) -> None:
        if self._closed:
            raise StoreError("store is shut down")

    @staticmethod
    def _read(path: Path) -> list[dict]:
        if not path.exists():
            return []
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError as err:
            raise StoreError(f"corrupt store file {path}: {err}") from err

    @staticmethod
    def _write(path: Path, records: list[dict]) -> None:
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(records, indent=2))
        tmp.replace(path)

    def _load_images(self) -> list[Image]:
        return [Image(**r) for r in self._read(self._images_file)]

    def _save_images(self, images: list[Image]) -> None:
        self._write(self._images_file, [asdict(i) for i in images])

    def _load_layers(self) -> list[Layer]:
        return [Layer(**r) for r in self._read(self._layers_file)]

    def _save_layers(self, layers: list[Layer]) -> None:
        self._write(self._layers_file, [asdict(l) for l in layers])

    def _get_image(self, image_id: str) -> Image:
        for img in self._load_images():
            if img.id == image_id:
                return img
        raise StoreError(f"image not known: {image_id}")

    def _big_data_path(self, image_id: str, key: str) -> Path:
        encoded = base64.urlsafe_b64encode(key.encode()).decode()
        return self.graph_root / "overlay-images" / image_id / f"={encoded}"

    # -- queries -----------------------------------------------------
    def images(self) -> list[Image]:
        self._check_open()
        return self._load_images()

    def layer(self, layer_id: str) -> Layer:
        self._check_open()
        for lay in self._load_layers():
            if lay.id == layer_id:
                return lay
        raise StoreError(f"layer not known: {layer_id}")

    def _chain(self, top: str) -> list[Layer]:
        chain = []
        current: str | None = top
        while current:
            lay = self.layer(current)
            chain.append(lay)
            current = lay.parent
        return chain

    # -- mounts ------------------------------------------------------
    def mount_image(self, image_id: str) -> str:
        """Materialise the image's merged filesystem and return its path."""
        self._check_open()
        img = self._get_image(image_id)
        merged = self.run_root / "mounts" / image_id
        if merged.exists():
            shutil.rmtree(merged)
        merged.mkdir(parents=True)
        for lay in reversed(self._chain(img.top_layer)):
            diff = self.graph_root / "overlay" / lay.id / "diff"
            if diff.is_dir():
                shutil.copytree(diff, merged, symlinks=True, dirs_exist_ok=True)
        return str(merged)

    def unmount_image(self, image_id: str) -> None:
        shutil.rmtree(self.run_root / "mounts" / image_id, ignore_errors=True)

    # -- mutations ---------------------------------------------------
    def put_layer(self, source_dir, uncompressed_digest, original_size) -> Layer:
        """Store a copy of ``source_dir`` as a new parentless layer."""
        self._check_open()
        layer = Layer(
            id=secrets.token_hex(32),
            uncompressed_digest=str(uncompressed_digest),
            original_size=int(original_size),
        )
        layer_dir = self.graph_root / "overlay" / layer.id
        shutil.copytree(source_dir, layer_dir / "diff", symlinks=True)
        link = "".join(secrets.choice(_LINK_ALPHABET) for _ in range(26))
        (layer_dir / "link").write_text(link)
        (self.graph_root / "overlay" / "l" / link).symlink_to(Path("..") / layer.id / "diff")
        layers = self._load_layers()
        layers.append(layer)
        self._save_layers(layers)
        return layer

    def create_image(self, names, top_layer, names_history, created, digest) -> Image:
        self._check_open()
        self.layer(top_layer)
        images = self._load_images()
        taken = {n for img in images for n in img.names}
        for name in names:
            if name in taken:
                raise StoreError(f"image name {name!r} is already in use")
        if isinstance(created, datetime):
            created = created.isoformat()
        img = Image(
            id=secrets.token_hex(32),
            names=list(names),
            top_layer=top_layer,
            names_history=list(names_history or []),
            created=created or datetime.now().astimezone().isoformat(),
            digest=str(digest),
        )
        images.append(img)
        self._save_images(images)
        return img

    def image_big_data(self, image_id: str, key: str) -> bytes:
        self._check_open()
        self._get_image(image_id)
        path = self._big_data_path(image_id, key)
        try:
            return path.read_bytes()
        except FileNotFoundError as err:
            raise StoreError(f"image {image_id} has no big data {key!r}") from err

    def set_image_big_data(self, image_id: str, key: str, data: bytes) -> None:
        self._check_open()
        images = self._load_images()
        for img in images:
            if img.id == image_id:
                break
        else:
            raise StoreError(f"image not known: {image_id}")
        path = self._big_data_path(image_id, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        if key not in img.big_data_names:
            img.big_data_names.append(key)
        self._save_images(images)

    def delete_image(self, image_id: str) -> list[str]:
        """Delete an image and the layers no other image uses; return removed layer ids."""
        self._check_open()
        images = self._load_images()
        target = next((i for i in images if i.id == image_id), None)
        if target is None:
            raise StoreError(f"image not known: {image_id}")
        remaining = [i for i in images if i.id != image_id]
        in_use = {lay.id for img in remaining for lay in self._chain(img.top_layer)}
        removed = [lay.id for lay in self._chain(target.top_layer) if lay.id not in in_use]
        for layer_id in removed:
            layer_dir = self.graph_root / "overlay" / layer_id
            link_file = layer_dir / "link"
            if link_file.exists():
                (self.graph_root / "overlay" / "l" / link_file.read_text().strip()).unlink(
                    missing_ok=True
                )
            shutil.rmtree(layer_dir, ignore_errors=True)
        self._save_layers([l for l in self._load_layers() if l.id not in removed])
        shutil.rmtree(self.graph_root / "overlay-images" / image_id, ignore_errors=True)
        self._save_images(remaining)
        return removed

    def shutdown(self) -> None:
        if self._closed:
            return
        mounts = self.run_root / "mounts"
        if mounts.exists():
            shutil.rmtree(mounts, ignore_errors=True)
        self._closed = True


@contextmanager
def open_store(graph_root, run_prefix) -> Iterator[Store]:
    """Open a store with a temporary run root, shutting it down afterwards."""
    with temp_dir(run_prefix) as run_root:
        store = Store(graph_root, run_root)
        try:
            yield store
        finally:
            store.shutdown()