from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from gavel.configuration.batch_settings import BatchJobSettings
from gavel.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()
DEFAULT_DATABASE_PATH = "./data/gavel.db"


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches contents of ``./config/app_config.yml``, exposes dictionary-like
    access helpers, and resolves batch-job settings through :class:`BatchJobSettings`.
    Uses fcntl file locks for safe concurrent access across processes.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                if not isinstance(data, dict):
                    logger.warning("[APP CONFIGURATION] Config file %s is not a mapping; ignoring.", self.config_path)
                    return {}
                return data
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping.

        The returned dict is the internal cache (shallow reference). Callers
        should not mutate it; use get(...) or the provided convenience
        properties instead.
        """
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def database_path(self) -> Path:
        """Return the SQLite database path, resolved against the working directory."""
        database = self._data.get("database", {})
        value = database.get("path") if isinstance(database, dict) else None
        return Path(str(value or DEFAULT_DATABASE_PATH)).resolve()

    @property
    def rate_limits(self) -> Dict[str, Dict[str, int]]:
        """Return per-action rate limit overrides.

        Each entry maps an action type value (e.g. ``"flag_content"``) to a dict
        with ``limit`` and ``window_minutes``. Malformed entries are dropped so
        the built-in defaults apply for that action.
        """
        raw = self._data.get("rate_limits", {})
        if not isinstance(raw, dict):
            return {}

        overrides: Dict[str, Dict[str, int]] = {}
        for action, entry in raw.items():
            if not isinstance(entry, dict):
                continue
            try:
                overrides[str(action)] = {
                    "limit": int(entry["limit"]),
                    "window_minutes": int(entry["window_minutes"]),
                }
            except (KeyError, TypeError, ValueError):
                logger.warning("[APP CONFIGURATION] Ignoring malformed rate limit for %s: %r", action, entry)
        return overrides

    @property
    def batch_jobs(self) -> BatchJobSettings:
        """Return the batch job settings wrapped in a BatchJobSettings helper."""
        settings = self._data.get("batch_jobs", {})
        if not isinstance(settings, dict):
            settings = {}
        return BatchJobSettings(settings)

    @property
    def notifications_enabled(self) -> bool:
        """Whether outbound enforcement notices should be delivered at all."""
        notifications = self._data.get("notifications", {})
        if isinstance(notifications, dict):
            return bool(notifications.get("enabled", True))
        return True


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
