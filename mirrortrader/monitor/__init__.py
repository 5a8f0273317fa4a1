"""Trader activity monitoring."""

from mirrortrader.monitor.signals import ProcessedSignalLog, SignalMonitor

__all__ = ["ProcessedSignalLog", "SignalMonitor"]
