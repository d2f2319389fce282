"""
Central configuration for pkgplan paths and transaction options.

Config file lookup (first found wins):
    1. $PKGPLAN_CONFIG
    2. .pkgplan.local in the project root (DEV mode)
    3. /etc/pkgplan.conf

PROD mode: /var/cache/pkgplan/archives/
DEV mode:  /var/tmp/pkgplan-dev/archives/

Config format (optional, one setting per line):
    cache_dir=/path/to/archives
    purge=yes
    max_workers=8
    install_command=rpm -U --replacepkgs {path}
    # Comments start with #

Keys not known to TransactionOptions are ignored.
"""

import logging
import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Config file names
LOCAL_CONFIG_FILE = ".pkgplan.local"
SYSTEM_CONFIG_FILE = Path("/etc/pkgplan.conf")
CONFIG_ENV = "PKGPLAN_CONFIG"

# PROD paths
PROD_CACHE_DIR = Path("/var/cache/pkgplan/archives")

# DEV paths (isolated from prod)
DEV_CACHE_DIR = Path("/var/tmp/pkgplan-dev/archives")

DEFAULT_MAX_WORKERS = 4

_TRUE = ('1', 'yes', 'true', 'on')
_FALSE = ('0', 'no', 'false', 'off')


@dataclass
class TransactionOptions:
    """Switches driving planning and execution."""
    purge: bool = False
    allow_remove: bool = True
    simulate: bool = False
    print_uris: bool = False
    download: bool = True               # False: only use artifacts already cached
    download_only: bool = False
    fix_missing: bool = False
    allow_unauthenticated: bool = False
    upgrade: bool = True                # False: skip requests for installed packages
    reinstall: bool = False
    no_locking: bool = False
    auto_remove: bool = False
    autoremove_recommends: bool = False
    strict: bool = False                # removal of a missing package is an error
    max_workers: int = DEFAULT_MAX_WORKERS
    cache_dir: Optional[Path] = None
    install_command: str = ""
    remove_command: str = ""
    purge_command: str = ""

    def get_cache_dir(self) -> Path:
        return Path(self.cache_dir) if self.cache_dir else get_cache_dir()


def _get_project_root() -> Optional[Path]:
    """Find project root from the running script.

    If running from ./bin/pkgplan, project root is the parent of bin/.
    """
    if sys.argv and sys.argv[0]:
        script_path = Path(sys.argv[0]).resolve()
        if script_path.parent.name == 'bin':
            return script_path.parent.parent
    return None


def read_config_file(config_path: Path) -> Optional[Dict[str, str]]:
    """Read a key=value config file.

    Returns:
        Dict with config values, or None if the file can't be read
    """
    if not config_path.exists():
        return None

    config = {}
    try:
        with open(config_path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, value = line.split('=', 1)
                    config[key.strip()] = value.strip()
    except OSError as e:
        logger.warning(f"Cannot read {config_path}: {e}")
        return None

    return config


def find_config_file() -> Optional[Path]:
    """Locate the config file to use, if any."""
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()

    project_root = _get_project_root()
    if project_root and (project_root / LOCAL_CONFIG_FILE).exists():
        return project_root / LOCAL_CONFIG_FILE

    if SYSTEM_CONFIG_FILE.exists():
        return SYSTEM_CONFIG_FILE
    return None


def is_dev_mode() -> bool:
    """DEV mode unless installed system-wide."""
    return not Path("/usr/bin/pkgplan").exists()


def get_cache_dir(dev_mode: bool = None) -> Path:
    """Get the artifact cache directory.

    Args:
        dev_mode: Force DEV mode if True, PROD if False, auto-detect if None
    """
    if dev_mode is None:
        dev_mode = is_dev_mode()
    return DEV_CACHE_DIR if dev_mode else PROD_CACHE_DIR


def _convert(name: str, value: str, default):
    if isinstance(default, bool) or name in _BOOL_FIELDS:
        lowered = value.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"{name}: expected yes/no, got {value!r}")
    if name == 'max_workers':
        return int(value)
    if name == 'cache_dir':
        return Path(value).expanduser()
    return value


_BOOL_FIELDS = {f.name for f in fields(TransactionOptions) if f.type in (bool, 'bool')}


def options_from_dict(values: Dict[str, str],
                      base: Optional[TransactionOptions] = None) -> TransactionOptions:
    """Apply string settings onto a TransactionOptions.

    Raises:
        ValueError: a known key has an unparsable value
    """
    options = base or TransactionOptions()
    known = {f.name: f for f in fields(TransactionOptions)}
    for key, value in values.items():
        name = key.replace('-', '_')
        if name not in known:
            logger.debug(f"Ignoring unknown config key {key}")
            continue
        setattr(options, name, _convert(name, value, getattr(options, name)))
    return options


def load_options(config_path: Optional[Path] = None) -> TransactionOptions:
    """Build TransactionOptions from the config file, if any."""
    path = config_path or find_config_file()
    if path is None:
        return TransactionOptions()
    values = read_config_file(Path(path))
    if values is None:
        return TransactionOptions()
    logger.debug(f"Loaded config from {path}")
    return options_from_dict(values)
