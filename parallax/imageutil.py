"""Image name resolution and lookup."""

from __future__ import annotations

import tomllib
from collections.abc import Iterable, Mapping

from .store import Image, Store

DEFAULT_ALIAS_FILES = (
    "/etc/containers/registries.conf",
    "/etc/containers/registries.conf.d/000-shortnames.conf",
)


class ImageNotFoundError(LookupError):
    """Raised when no image in a store carries the requested name."""


def is_short_name(ref: str) -> bool:
    """True if ``ref`` has no registry domain component."""
    first, sep, _ = ref.partition("/")
    if not sep:
        return True
    return not ("." in first or ":" in first or first == "localhost")


def load_aliases(paths: Iterable[str] = DEFAULT_ALIAS_FILES) -> dict[str, str]:
    """Read the ``[aliases]`` tables of registries configuration files; later files win."""
    aliases: dict[str, str] = {}
    for path in paths:
        try:
            with open(path, "rb") as fh:
                data = tomllib.load(fh)
        except FileNotFoundError:
            continue
        aliases.update({str(k): str(v) for k, v in data.get("aliases", {}).items()})
    return aliases


def canonical_image_name(ref: str, aliases: Mapping[str, str]) -> str:
    """Fully qualified ``name:tag`` for ``ref``, defaulting the tag to ``latest``."""
    parts = ref.split(":")
    name = parts[0]
    tag = parts[1] if len(parts) == 2 and parts[1] else "latest"
    if is_short_name(ref):
        try:
            name = aliases[name]
        except KeyError:
            raise ValueError(f"no short-name alias configured for {name!r}") from None
    return f"{name}:{tag}"


def find_image(store: Store, name: str, aliases: Mapping[str, str]) -> Image:
    try:
        canonical = canonical_image_name(name, aliases)
    except ValueError as err:
        raise ValueError(f'Resolving canonical name "{name}": {err}') from err
    for img in store.images():
        if name in img.names or canonical in img.names:
            return img
    raise ImageNotFoundError(f'Image not found: "{name}"')