"""
Fold profile fragments into a single coverage model.

Each fragment is parsed on its own into a partial model and the partials
are summed. Corrupt fragments are dropped with a warning instead of voiding
the whole run; the warnings travel with the result so the report can show
them.
"""

import logging
from dataclasses import dataclass, field
from functools import reduce
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from .config import template_regex
from .discover import BinaryDescriptor
from .errors import MergeError
from .fragment import read_fragment
from .llvm import LlvmToolchain
from .model import CoverageModel
from .runner import ProfileFragment

LOGGER = logging.getLogger("covgate")


@dataclass(frozen=True)
class MergeResult:
    model: CoverageModel
    merged: Tuple[Path, ...] = ()
    empty: Tuple[Path, ...] = ()
    warnings: Tuple[str, ...] = field(default_factory=tuple)


def _owner(filename: str, binaries: Sequence[BinaryDescriptor], template: str) -> Optional[BinaryDescriptor]:
    """Guess which binary wrote a leftover fragment from the name template."""
    head = template.split("{token}", 1)[0]
    best = None
    best_len = 0
    for binary in binaries:
        prefix = head.format(name=binary.name, kind=binary.kind)
        if prefix and filename.startswith(prefix) and len(prefix) > best_len:
            best, best_len = binary, len(prefix)
    return best


def collect_fragments(
    directory: Path,
    produced: Iterable[ProfileFragment],
    binaries: Sequence[BinaryDescriptor] = (),
    template: str = "{token}",
) -> Tuple[ProfileFragment, ...]:
    """This run's fragments plus whatever else sits in the fragment directory.

    Leftovers from an earlier run are merged too unless the directory was
    cleaned first. Files whose names the template cannot produce are left
    alone.
    """
    produced = tuple(produced)
    matcher = template_regex(template)
    seen = {f.path.resolve() for f in produced}
    leftovers = []
    if directory.is_dir():
        for p in sorted(directory.iterdir()):
            if not p.is_file() or p.resolve() in seen or not matcher.fullmatch(p.name):
                continue
            owner = _owner(p.name, binaries, template)
            leftovers.append(ProfileFragment(binary=owner, path=p, token=p.stem))
    if leftovers:
        LOGGER.info("including %d fragments left by an earlier run in %s", len(leftovers), directory)
    return produced + tuple(leftovers)


def load_partial(
    fragment: ProfileFragment,
    toolchain: Optional[LlvmToolchain] = None,
    source_root: Optional[Path] = None,
) -> Optional[CoverageModel]:
    binary = fragment.binary.path if fragment.binary is not None else None
    return read_fragment(fragment.path, binary, toolchain, source_root)


def merge_fragments(
    fragments: Iterable[ProfileFragment],
    ignore: Sequence[str] = (),
    source_root: Optional[Path] = None,
    ignore_not_existing: bool = False,
    toolchain: Optional[LlvmToolchain] = None,
) -> MergeResult:
    """Merge every fragment into one model.

    Files matching an ignore glob are dropped from the result, as are files
    missing on disk when ignore_not_existing is set.
    """
    partials = []
    merged = []
    empty = []
    warnings = []

    for fragment in fragments:
        try:
            partial = load_partial(fragment, toolchain, source_root)
        except MergeError as e:
            LOGGER.warning("skipping fragment of %s: %s", fragment.label, e)
            warnings.append(f"{fragment.label}: {e}")
            continue
        if partial is None:
            LOGGER.warning("%s left an empty profile fragment %s", fragment.label, fragment.path)
            warnings.append(f"{fragment.label}: empty profile fragment")
            empty.append(fragment.path)
            continue
        partials.append(partial)
        merged.append(fragment.path)

    model = reduce(CoverageModel.merge, partials, CoverageModel())
    model = model.without(ignore, source_root)
    if ignore_not_existing:
        model = model.existing_only(source_root)

    LOGGER.info("merged %d fragments into %d source files (%d warnings)",
                len(merged), len(model.files), len(warnings))
    return MergeResult(
        model=model,
        merged=tuple(merged),
        empty=tuple(empty),
        warnings=tuple(warnings),
    )
