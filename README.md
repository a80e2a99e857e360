# Parallax

Parallax moves container images from a local image store into a shared,
read-only image store. Each image is flattened to a single layer, and the
image's root filesystem is packed into a squashfs file next to that layer.
The shared store can then sit on a network file system and serve many nodes.

## Requirements

- Python 3.11 or later, on Linux
- `rsync` on `PATH`
- `mksquashfs` (by default `/usr/bin/mksquashfs`)

## Installation

```
pip install .
```

This installs the `parallax` command.

## Usage

```
parallax --migrate --image <image[:tag]> [options]
parallax --rmi     --image <image[:tag]> [options]
```

| Option | Meaning | Default |
| --- | --- | --- |
| `--migrate` | Migrate an image | |
| `--rmi` | Remove an image | |
| `--image` | Name (and tag) of the image | |
| `--podmanRoot` | Local image store directory | `/var/lib/containers/storage` |
| `--roStoragePath` | Read-only (shared) store directory | `/mnt/nfs/podman` |
| `--mksquashfsPath` | Path to the `mksquashfs` binary | `/usr/bin/mksquashfs` |
| `--mksquashfs-opts` | Arguments for `mksquashfs`, shell-quoted; replace the defaults | |
| `--log-level` | `debug`, `info`, `warn`, `error`, `fatal`, `panic` | `info` |
| `--version` | Print the version and exit | |
| `-h`, `--help` | Print the usage text | |

Each option may also be written with a single dash (`-image`).

Exactly one of `--migrate` and `--rmi` must be given, together with
`--image`. Both store paths must be existing directories and the
`mksquashfs` path must be an executable file. When a check fails, the
command prints the problem and the usage text to standard error and exits
with status 2. A failed migration or removal exits with status 1.

An image name without a tag means `:latest`. A name without a registry
domain is looked up in the `[aliases]` tables of
`/etc/containers/registries.conf` and
`/etc/containers/registries.conf.d/000-shortnames.conf`; a short name with
no alias is an error.

Without `--mksquashfs-opts`, `mksquashfs` is run with:

```
-noappend -comp zstd -Xcompression-level 1 -noD -no-xattrs -e security.capability
```

Examples:

```
parallax --migrate --image ubuntu:latest
parallax --rmi     --image alpine:3.18
```

Log messages go to standard output.

## How it works

A migration:

1. Copies the read-only store into a temporary directory with `rsync`,
   leaving out `squash/`; the copy's `squash` entry is a symlink to the real
   `squash/` directory, which is created if missing.
2. Stops if the image is already there with both
   `squash/<link>.squash` and `overlay/l/<link>.squash`.
3. Materialises the source image's filesystem and adds a single small layer
   holding a `.migrationv3-<name>` marker file.
4. Runs `mksquashfs` on the source filesystem to write
   `squash/<link>.squash` and links it from `overlay/l/<link>.squash`.
5. Records the new image under its fully qualified name (and the name as
   given), with a config whose `rootfs` lists only the new layer, an extra
   history entry, a new manifest, and the source image's other data blobs.
6. Copies the changes back to the read-only store with `rsync --delete`.

`--rmi` finds the image in the read-only store, removes its two squash
entries and deletes the image with the layers no other image uses. An image
that cannot be found is only logged.

Set `PARALLAX_KEEP_TMP` to any non-empty value to keep the temporary
directories for inspection.

## Library use

- `parallax.cli.parse_and_validate(argv)` returns a `Cli` with the `Config`,
  the `Operation` and the log level.
- `parallax.migration.run_migration(config)` returns the new `Image`, or
  `None` if the image was already migrated.
- `parallax.rmi.run_rmi(config)` removes an image.
- `parallax.store.Store` and `parallax.store.open_store(graph_root, run_prefix)`
  give access to a store directory.
- `parallax.layers.generate_manifest_and_config(...)` rewrites a manifest and
  config for a single layer.

## Limitations

- The store is kept as JSON records in `overlay-images/images.json` and
  `overlay-layers/layers.json` with layer contents under
  `overlay/<layer>/diff`. Parallax does not read or write Podman's own
  storage databases, so `--podmanRoot` must point at a store in this layout.
- Images are not mounted with overlayfs: an image's layers are copied into a
  directory under the run root for the length of the migration.
- Parallax does not pull images from registries.