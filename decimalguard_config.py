"""Configuration file support for decimalguard.

Loads .decimalguard.yml from the project root (or specified path) and provides
the watched function set, trusted conversion functions, file globs, directory
exclusions and CI settings.

Config format example:

    source_root: "src"

    watched_functions:
      - "divDecimals"
      - "mulDecimals"
      - "addDecimals"
      - "subDecimals"

    safe_conversion_functions:
      - "Number"
      - "parseInt"
      - "parseFloat"
      - "isNaN"
      - "isFinite"

    file_globs: ["*.ts", "*.tsx", "*.js", "*.jsx"]

    exclude_globs:
      - "__generated__"
      - "**/*.stories.tsx"

    fail_on_high: true
    min_level: "LOW"

The camelCase spellings (sourceRoot, watchedFunctions, safeConversionFunctions,
fileGlobs, excludeGlobs, failOnHigh, minLevel) are accepted as well.
"""

import fnmatch
import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

import yaml


CONFIG_FILENAMES = ('.decimalguard.yml', '.decimalguard.yaml')

DEFAULT_WATCHED_FUNCTIONS = frozenset({
    'divDecimals',
    'mulDecimals',
    'addDecimals',
    'subDecimals',
})

DEFAULT_SAFE_CONVERSION_FUNCTIONS = frozenset({
    'Number',
    'parseInt',
    'parseFloat',
    'isNaN',
    'isFinite',
})

DEFAULT_FILE_GLOBS = ('*.ts', '*.tsx', '*.js', '*.jsx')

# Dependency and build output directories, skipped regardless of exclude_globs
ALWAYS_EXCLUDED_DIRS = frozenset({
    'node_modules', 'dist', 'build', '.git', '.next',
    'bower_components', 'jspm_packages',
})

LEVEL_NAMES = ('HIGH', 'MEDIUM', 'LOW')

_KEY_ALIASES = {
    'sourceRoot': 'source_root',
    'watchedFunctions': 'watched_functions',
    'safeConversionFunctions': 'safe_conversion_functions',
    'fileGlobs': 'file_globs',
    'excludeGlobs': 'exclude_globs',
    'failOnHigh': 'fail_on_high',
    'minLevel': 'min_level',
}


class ConfigurationError(Exception):
    """Invalid configuration. Fatal: the run aborts before any file is scanned."""


@dataclass
class DecimalGuardConfig:
    """Parsed configuration from .decimalguard.yml."""
    source_root: str = 'src'
    watched_functions: FrozenSet[str] = DEFAULT_WATCHED_FUNCTIONS
    safe_conversion_functions: FrozenSet[str] = DEFAULT_SAFE_CONVERSION_FUNCTIONS
    file_globs: Tuple[str, ...] = DEFAULT_FILE_GLOBS
    exclude_globs: List[str] = field(default_factory=list)
    fail_on_high: bool = False
    min_level: str = 'LOW'
    config_path: Optional[str] = None

    def validate(self) -> 'DecimalGuardConfig':
        """Check cross-field invariants. Returns self so calls can be chained."""
        if not self.watched_functions:
            raise ConfigurationError("watched_functions must name at least one function")
        overlap = self.watched_functions & self.safe_conversion_functions
        if overlap:
            raise ConfigurationError(
                "watched_functions and safe_conversion_functions must be disjoint; "
                f"both contain: {', '.join(sorted(overlap))}"
            )
        if not self.file_globs:
            raise ConfigurationError("file_globs must contain at least one pattern")
        if self.min_level not in LEVEL_NAMES:
            raise ConfigurationError(
                f"min_level must be one of {', '.join(LEVEL_NAMES)}, got {self.min_level!r}"
            )
        return self

    def matches_file(self, file_name: str) -> bool:
        """Check if a file name matches one of the include globs."""
        return any(fnmatch.fnmatch(file_name, pattern) for pattern in self.file_globs)

    def should_exclude(self, file_path: str) -> bool:
        """Check if a path matches an always-excluded directory or an exclusion pattern."""
        parts = file_path.replace('\\', '/').split('/')
        if any(part in ALWAYS_EXCLUDED_DIRS for part in parts):
            return True
        for pattern in self.exclude_globs:
            bare = pattern.rstrip('/')
            if fnmatch.fnmatch(file_path, pattern):
                return True
            # A bare directory name or name glob matches any path component
            if '/' not in bare and any(fnmatch.fnmatch(part, bare) for part in parts):
                return True
        return False


def load_config(target_path: str, config_path: str = None) -> Optional[DecimalGuardConfig]:
    """Load decimalguard configuration.

    Args:
        target_path: The scan target path (used to find .decimalguard.yml)
        config_path: Explicit config path (overrides auto-discovery)

    Returns:
        DecimalGuardConfig if found, None otherwise.

    Raises:
        ConfigurationError: the explicit config file is missing, or a config
            file is malformed.
    """
    if config_path:
        if os.path.isfile(config_path):
            return _parse_config(config_path)
        raise ConfigurationError(f"config file not found: {config_path}")

    # Walk up from target_path (or its nearest existing ancestor)
    search_dir = os.path.abspath(target_path)
    while not os.path.exists(search_dir):
        parent = os.path.dirname(search_dir)
        if parent == search_dir:
            break
        search_dir = parent
    if os.path.isfile(search_dir):
        search_dir = os.path.dirname(search_dir)

    while True:
        for name in CONFIG_FILENAMES:
            candidate = os.path.join(search_dir, name)
            if os.path.isfile(candidate):
                return _parse_config(candidate)
        parent = os.path.dirname(search_dir)
        if parent == search_dir:
            break  # Reached filesystem root
        search_dir = parent

    return None


def _name_set(data: dict, key: str) -> Optional[FrozenSet[str]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ConfigurationError(f"{key} must be a list of function names")
    return frozenset(str(v) for v in value)


def _str_list(data: dict, key: str) -> Optional[List[str]]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigurationError(f"{key} must be a list of glob patterns")
    return [str(v) for v in value]


def _parse_config(config_path: str) -> DecimalGuardConfig:
    """Parse a .decimalguard.yml file into a DecimalGuardConfig."""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"cannot read {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path}: top level must be a mapping")

    data = {_KEY_ALIASES.get(k, k): v for k, v in raw.items()}
    config = DecimalGuardConfig(config_path=config_path)

    if data.get('source_root') is not None:
        config.source_root = str(data['source_root'])

    watched = _name_set(data, 'watched_functions')
    if watched is not None:
        config.watched_functions = watched

    safe = _name_set(data, 'safe_conversion_functions')
    if safe is not None:
        config.safe_conversion_functions = safe

    globs = _str_list(data, 'file_globs')
    if globs is not None:
        config.file_globs = tuple(globs)

    excludes = _str_list(data, 'exclude_globs')
    if excludes is not None:
        config.exclude_globs = excludes

    if 'fail_on_high' in data:
        if not isinstance(data['fail_on_high'], bool):
            raise ConfigurationError("fail_on_high must be true or false")
        config.fail_on_high = data['fail_on_high']

    if data.get('min_level') is not None:
        config.min_level = str(data['min_level']).upper()

    return config.validate()
