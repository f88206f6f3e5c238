import logging
import os
import secrets
from typing import Any, Dict, Mapping, MutableMapping, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "site-exporter.yml"
DEFAULT_STATE_DB_NAME = "site-exporter-state.db"
# Keeps state for the current process only
MEMORY_STATE_DB = ":memory:"
ENV_FILE_PATHS = [".env", "../.env"]

DEFAULT_SETTINGS: Dict[str, Any] = {
    "site_root": "",
    "site_name": "",
    "uploads_dir": "",
    "uploads_url": "",
    "admin_url": "",
    "state_db": "",
    "token_secret": "",
    "max_execution_time": None,
    "log_level": "INFO",
    "cli_user_id": 1,
}

# Environment variable -> settings key
ENV_OVERRIDES = {
    "SITE_EXPORTER_SITE_ROOT": "site_root",
    "SITE_EXPORTER_SITE_NAME": "site_name",
    "SITE_EXPORTER_UPLOADS_DIR": "uploads_dir",
    "SITE_EXPORTER_UPLOADS_URL": "uploads_url",
    "SITE_EXPORTER_ADMIN_URL": "admin_url",
    "SITE_EXPORTER_STATE_DB": "state_db",
    "SITE_EXPORTER_SECRET": "token_secret",
    "SITE_EXPORTER_MAX_EXECUTION_TIME": "max_execution_time",
    "SITE_EXPORTER_LOG_LEVEL": "log_level",
}


class SettingsError(Exception):
    """Raised when the settings file or an override cannot be used."""


def load_env_file(env_path: str, environ: Optional[MutableMapping[str, str]] = None) -> bool:
    """
    Simple .env file parser that doesn't require external dependencies.
    Loads key=value pairs from the file into ``environ`` (os.environ by default).

    :return: True if the file was read.
    """
    environ = os.environ if environ is None else environ
    if not os.path.isfile(env_path):
        return False

    try:
        with open(env_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()

                # Skip empty lines and comments
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, value = line.split("=", 1)  # Split on first = only
                key = key.strip()
                value = value.strip()

                if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
                    value = value[1:-1]

                if key:
                    environ[key] = value
    except OSError as e:
        logger.warning("Failed to load .env file '%s': %s", env_path, e)
        return False

    logger.debug(".env file loaded from '%s'", env_path)
    return True


def load_env_files(environ: Optional[MutableMapping[str, str]] = None) -> None:
    """Load the first .env file found in the standard locations."""
    for env_path in ENV_FILE_PATHS:
        if load_env_file(env_path, environ):
            break


def _to_int(key: str, value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise SettingsError(f"Setting '{key}' must be an integer, got {value!r}")


class Settings:
    """
    Exporter settings from a YAML (or JSON) file, a .env file and
    SITE_EXPORTER_* environment variables, in increasing precedence.
    """

    def __init__(
        self,
        settings_file: Optional[str] = None,
        load_env: bool = True,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> None:
        """
        :param settings_file: Path to the settings file. Defaults to
            ``site-exporter.yml`` in the working directory.
        :param load_env: Whether to read a .env file into ``environ`` first.
        :param environ: Environment mapping, os.environ by default.
        :raises SettingsError: If the file is unparsable or a value is invalid.
        """
        environ = os.environ if environ is None else environ
        if load_env:
            load_env_files(environ)

        self.settings_file = settings_file or DEFAULT_SETTINGS_FILE
        self.raw: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        self.raw.update(self._load_file(self.settings_file))
        self._apply_env_overrides(environ)

        self.site_root: str = os.path.abspath(self.raw.get("site_root") or os.getcwd())
        self.site_name: str = str(
            self.raw.get("site_name") or os.path.basename(self.site_root.rstrip("/")) or "site"
        )
        self.uploads_dir: str = self.raw.get("uploads_dir") or os.path.join(
            self.site_root, "wp-content", "uploads"
        )
        self.uploads_url: str = str(self.raw.get("uploads_url") or "")
        self.admin_url: str = str(self.raw.get("admin_url") or "")
        self.state_db: str = str(
            self.raw.get("state_db")
            or os.path.join(
                os.path.dirname(os.path.abspath(self.settings_file)), DEFAULT_STATE_DB_NAME
            )
        )
        self.max_execution_time = _to_int(
            "max_execution_time", self.raw.get("max_execution_time")
        )
        self.log_level: str = str(self.raw.get("log_level") or "INFO").upper()
        self.cli_user_id = _to_int("cli_user_id", self.raw.get("cli_user_id")) or 1

        self.token_secret: str = str(self.raw.get("token_secret") or "")
        if not self.token_secret:
            logger.warning(
                "No token secret configured; issued links are valid for this process only."
            )
            self.token_secret = secrets.token_hex(32)

        if self.admin_url and not self.admin_url.endswith("/"):
            self.admin_url += "/"

        if not self.uploads_url:
            logger.warning("uploads_url is not configured; exports will fail.")

    def _load_file(self, path: str) -> Dict[str, Any]:
        if not os.path.isfile(path):
            logger.warning("Settings file '%s' not found. Using defaults.", path)
            return {}

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            raise SettingsError(f"Error loading settings file '{path}': {e}")

        if not isinstance(data, dict):
            raise SettingsError(f"Settings file '{path}' must contain a mapping")

        logger.info("Settings loaded from '%s'.", path)
        return data

    def _apply_env_overrides(self, environ: Mapping[str, str]) -> None:
        for env_key, setting in ENV_OVERRIDES.items():
            value = environ.get(env_key)
            if value is not None and value != "":
                self.raw[setting] = value

    def to_dict(self) -> Dict[str, Any]:
        """Effective settings with the secret masked."""
        return {
            "site_root": self.site_root,
            "site_name": self.site_name,
            "uploads_dir": self.uploads_dir,
            "uploads_url": self.uploads_url,
            "admin_url": self.admin_url,
            "state_db": self.state_db,
            "token_secret": "***",
            "max_execution_time": self.max_execution_time,
            "log_level": self.log_level,
            "cli_user_id": self.cli_user_id,
        }
