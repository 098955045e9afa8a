"""
Configuration: loads settings from .patchstream.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).

Without ``--config`` the file is looked up in the working directory and each
of its parents, so a checkout can carry one file for all its subdirectories;
``~/.patchstream.yaml`` is the last resort.
"""

import logging
import os

import yaml

logger = logging.getLogger(__name__)

_DEFAULTS = {
    "endpoint_url": "http://localhost:3000/api/json-render",
    "api_key": "",
    "connect_timeout": 10.0,
    "read_timeout": 120.0,
    "chunk_size": 0,
    "log_dir": ".patchstream/logs",
    "log_level": "DEBUG",
    "headers": {},
}

_CONFIG_FILENAMES = (".patchstream.yaml", ".patchstream.yml")


def _candidate_dirs(start: str) -> list[str]:
    """``start`` and its ancestors, nearest first, then the home directory."""
    dirs = []
    current = os.path.abspath(start)
    while True:
        dirs.append(current)
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    home = os.path.abspath(os.path.expanduser("~"))
    if home not in dirs:
        dirs.append(home)
    return dirs


def _find_config_file(explicit_path: str | None = None,
                      start: str | None = None) -> str | None:
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        logger.warning(f"[Config] {explicit_path} not found, using defaults")
        return None

    for d in _candidate_dirs(start or os.getcwd()):
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Read the settings mapping from ``path``; anything else counts as empty."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        logger.warning(f"[Config] Cannot read {path}: {e}")
        return {}
    except yaml.YAMLError as e:
        logger.warning(f"[Config] Ignoring {path}, invalid YAML: {e}")
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"[Config] Ignoring {path}: top level must be a mapping, "
                       f"got {type(data).__name__}")
        return {}
    return data


class Config:
    """Settings for talking to the producer endpoint.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``PATCHSTREAM_*``)
    3. .patchstream.yaml config file
    4. Built-in defaults

    A value that cannot be converted to the setting's type is skipped with
    a warning and the next source is used.  ``SOURCE`` is the file the
    YAML layer came from, or ``None``.
    """

    def __init__(self, yaml_data: dict | None = None, source: str | None = None):
        yd = yaml_data or {}
        self.SOURCE = source

        def _get(yaml_key: str, cast=str):
            env_name = f"PATCHSTREAM_{yaml_key.upper()}"
            for origin, raw in ((env_name, os.getenv(env_name)),
                                (yaml_key, yd.get(yaml_key))):
                if raw is None:
                    continue
                try:
                    return cast(raw)
                except (TypeError, ValueError):
                    logger.warning(f"[Config] Ignoring {origin}={raw!r}: "
                                   f"expected {cast.__name__}")
            return _DEFAULTS[yaml_key]

        self.ENDPOINT_URL = _get("endpoint_url")
        self.API_KEY = _get("api_key")
        self.CONNECT_TIMEOUT = _get("connect_timeout", cast=float)
        self.READ_TIMEOUT = _get("read_timeout", cast=float)
        # 0 means "yield bytes as they arrive"
        self.CHUNK_SIZE = _get("chunk_size", cast=int)
        self.LOG_DIR = _get("log_dir")
        self.LOG_LEVEL = _get("log_level")

        self.HEADERS: dict[str, str] = {}
        headers_section = yd.get("headers", _DEFAULTS["headers"])
        if isinstance(headers_section, dict):
            for name, value in headers_section.items():
                self.HEADERS[str(name)] = str(value)
        elif headers_section is not None:
            logger.warning("[Config] Ignoring headers: expected a mapping")

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data, source=path)
