"""Position monitoring: turns market state into rebalance job requests."""

from .position_monitor import MonitorReport, PositionEvaluation, PositionMonitor

__all__ = ["MonitorReport", "PositionEvaluation", "PositionMonitor"]
