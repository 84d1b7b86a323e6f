"""Real-time request security monitor."""

from secmon.config import MonitorConfig
from secmon.monitor import RequestMonitor, RequestSnapshot

__all__ = ["MonitorConfig", "RequestMonitor", "RequestSnapshot"]
