"""Read-only terminal views over the rollout history."""

from rollwright.monitor.renderer import HistoryRenderer

__all__ = ["HistoryRenderer"]
