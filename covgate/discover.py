"""Find the instrumented test and example executables of a build."""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from .config import GateConfig
from .errors import DiscoveryError

LOGGER = logging.getLogger("covgate")

TEST = "test"
EXAMPLE = "example"

# Build metadata that sits next to the executables.
EXCLUDE_SUFFIXES = {".d", ".rlib", ".rmeta", ".so", ".dylib", ".dll", ".pdb", ".dSYM", ".o"}


@dataclass(frozen=True)
class BinaryDescriptor:
    path: Path
    kind: str
    args: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def command(self) -> List[str]:
        return [str(self.path), *self.args]


def find_executables(directory: Path, pattern: str) -> List[Path]:
    """Executables directly in directory whose name matches pattern."""
    found = []
    if not directory.is_dir():
        return found
    rx = re.compile(pattern)
    for p in sorted(directory.iterdir()):
        if p.suffix in EXCLUDE_SUFFIXES:
            continue
        if not rx.match(p.name):
            continue
        if not p.is_file():
            continue
        if not os.access(p, os.X_OK):
            continue
        found.append(p)
    return found


def filter_binaries(binaries, pattern):
    """Filter binaries by regex pattern against name."""
    if not pattern:
        return list(binaries)
    try:
        rx = re.compile(pattern, re.IGNORECASE)
    except re.error:
        # Fall back to literal substring
        rx = re.compile(re.escape(pattern), re.IGNORECASE)
    return [b for b in binaries if rx.search(b.name)]


def discover_binaries(config: GateConfig) -> Tuple[BinaryDescriptor, ...]:
    """Return the ordered test binaries followed by the example binaries.

    Raises DiscoveryError when the build directory is missing or when no
    test binary is found. Examples are optional.
    """
    build = config.build_dir
    if not build.is_dir():
        raise DiscoveryError(
            f"build directory '{build}' does not exist; run the instrumented build first"
        )

    tests = [
        BinaryDescriptor(path=p, kind=TEST, args=tuple(config.test_args))
        for p in find_executables(build / config.test_subdir, config.test_pattern)
    ]
    examples = [
        BinaryDescriptor(path=p, kind=EXAMPLE, args=tuple(config.example_args))
        for p in find_executables(build / config.example_subdir, config.example_pattern)
    ]

    tests = filter_binaries(tests, config.name_filter)
    examples = filter_binaries(examples, config.name_filter)

    if not tests:
        where = build / config.test_subdir
        raise DiscoveryError(
            f"no test binaries matching /{config.test_pattern}/ found in '{where}'"
        )

    LOGGER.info("discovered %d test and %d example binaries", len(tests), len(examples))
    return tuple(tests + examples)
