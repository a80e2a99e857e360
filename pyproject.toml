[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "parallax"
version = "1.0.0"
description = "OCI image migration tool for Podman on HPC systems"
requires-python = ">=3.11"
dependencies = []
keywords = ["podman", "oci", "containers", "squashfs", "hpc", "overlay"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
parallax = "parallax.app:main"

[tool.hatch.build.targets.wheel]
packages = ["parallax"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
