"""
Configuration for a coverage gate run.

Every knob comes from the environment (COVGATE_* plus the LLVM tool
variables) and can be overridden from the command line.
"""

import os
import re
import string
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional, Pattern, Tuple

from .errors import ConfigError

DEFAULT_REQUIRED = 100.0
DEFAULT_BUILD_DIR = "target/debug"
DEFAULT_FRAGMENT_TEMPLATE = "{kind}-{name}-{token}.profraw"
DEFAULT_PROFILE_ENV = "LLVM_PROFILE_FILE"
DEFAULT_IGNORE = ("*cargo*", "*example*")
DEFAULT_TIMEOUT = 300.0

TEST_PATTERN = r"^[A-Za-z0-9_]+-[0-9a-f]{16}$"
EXAMPLE_PATTERN = r"^[A-Za-z0-9_]+$"


@dataclass(frozen=True)
class GateConfig:
    required: float = DEFAULT_REQUIRED
    build_dir: Path = Path(DEFAULT_BUILD_DIR)
    source_root: Path = Path(".")
    fragment_dir: Optional[Path] = None
    fragment_template: str = DEFAULT_FRAGMENT_TEMPLATE
    profile_env: str = DEFAULT_PROFILE_ENV
    ignore: Tuple[str, ...] = DEFAULT_IGNORE
    ignore_not_existing: bool = True
    timeout: float = DEFAULT_TIMEOUT
    jobs: int = 1
    test_subdir: str = "deps"
    test_pattern: str = TEST_PATTERN
    test_args: Tuple[str, ...] = ()
    example_subdir: str = "examples"
    example_pattern: str = EXAMPLE_PATTERN
    example_args: Tuple[str, ...] = ()
    name_filter: str = ""
    clean: bool = False
    llvm_cov: Optional[str] = None
    llvm_profdata: Optional[str] = None
    extra_env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.required <= 100.0:
            raise ConfigError(f"required coverage must be within 0..100, got {self.required}")
        template_regex(self.fragment_template)
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.jobs < 0:
            raise ConfigError(f"jobs must not be negative, got {self.jobs}")

    @property
    def fragments(self) -> Path:
        """Directory fragments are written to."""
        if self.fragment_dir is not None:
            return self.fragment_dir
        return self.build_dir / "coverage-fragments"

    @property
    def fragment_regex(self) -> Pattern:
        """Matches the file names the fragment template can produce."""
        return template_regex(self.fragment_template)

    @property
    def workers(self) -> int:
        if self.jobs > 0:
            return self.jobs
        return os.cpu_count() or 4

    def with_overrides(self, **changes) -> "GateConfig":
        """Return a copy with every non-None value in changes applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GateConfig":
        env = os.environ if environ is None else environ
        values = {}

        if env.get("COVGATE_REQUIRED"):
            values["required"] = _float(env, "COVGATE_REQUIRED")
        if env.get("COVGATE_BUILD_DIR"):
            values["build_dir"] = Path(env["COVGATE_BUILD_DIR"])
        if env.get("COVGATE_SOURCE_ROOT"):
            values["source_root"] = Path(env["COVGATE_SOURCE_ROOT"])
        if env.get("COVGATE_FRAGMENT_DIR"):
            values["fragment_dir"] = Path(env["COVGATE_FRAGMENT_DIR"])
        if env.get("COVGATE_FRAGMENT_TEMPLATE"):
            values["fragment_template"] = env["COVGATE_FRAGMENT_TEMPLATE"]
        if env.get("COVGATE_PROFILE_ENV"):
            values["profile_env"] = env["COVGATE_PROFILE_ENV"]
        if "COVGATE_IGNORE" in env:
            values["ignore"] = split_patterns(env["COVGATE_IGNORE"])
        if env.get("COVGATE_TIMEOUT"):
            values["timeout"] = _float(env, "COVGATE_TIMEOUT")
        if env.get("COVGATE_JOBS"):
            values["jobs"] = _int(env, "COVGATE_JOBS")
        if env.get("LLVM_COV"):
            values["llvm_cov"] = env["LLVM_COV"]
        if env.get("LLVM_PROFDATA"):
            values["llvm_profdata"] = env["LLVM_PROFDATA"]

        return cls(**values)


def split_patterns(raw: str) -> Tuple[str, ...]:
    """Split a comma separated glob list, dropping blanks."""
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _float(env, key):
    try:
        return float(env[key])
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {env[key]!r}") from None


def _int(env, key):
    try:
        return int(env[key])
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {env[key]!r}") from None


TEMPLATE_FIELDS = {
    "name": r"[^/]+?",
    "kind": r"[^/]+?",
    # runner tokens are <pid>-<sequence>
    "token": r"\d+-\d+",
}


def template_regex(template: str) -> Pattern:
    """Compile a fragment name template into a full-match regex.

    Raises ConfigError for malformed templates, unknown placeholders or a
    missing {token}.
    """
    parts = []
    fields = set()
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as e:
        raise ConfigError(f"fragment template {template!r} is malformed: {e}") from None
    for literal, name, spec, conversion in parsed:
        parts.append(re.escape(literal))
        if name is None:
            continue
        if name not in TEMPLATE_FIELDS or spec or conversion:
            raise ConfigError(
                f"fragment template {template!r} uses {{{name}}}; "
                f"only {{name}}, {{kind}} and {{token}} are allowed"
            )
        fields.add(name)
        parts.append(TEMPLATE_FIELDS[name])
    if "token" not in fields:
        raise ConfigError(f"fragment template {template!r} must contain {{token}}")
    if "/" in template:
        raise ConfigError(f"fragment template {template!r} must be a plain file name")
    return re.compile("".join(parts))
