from typing import Any, Dict


class BatchJobSettings:
    """Helper exposing typed accessors for the scheduled batch job configuration.

    Mirrors the ``batch_jobs`` section of ``app_config.yml``. Missing or
    malformed values fall back to the defaults below.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        return self.data

    @property
    def batch_size(self) -> int:
        try:
            return max(1, int(self.data.get("batch_size", 10)))
        except (TypeError, ValueError):
            return 10

    @property
    def inter_batch_delay_seconds(self) -> float:
        try:
            return max(0.0, float(self.data.get("inter_batch_delay_seconds", 1.0)))
        except (TypeError, ValueError):
            return 1.0

    @property
    def signal_rebuild_interval_seconds(self) -> float:
        try:
            return float(self.data.get("signal_rebuild_interval_seconds", 86400.0))
        except (TypeError, ValueError):
            return 86400.0

    @property
    def rogue_sweep_interval_seconds(self) -> float:
        try:
            return float(self.data.get("rogue_sweep_interval_seconds", 3600.0))
        except (TypeError, ValueError):
            return 3600.0
