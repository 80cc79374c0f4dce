"""Optional advisory signals from language-model sources."""

from .advisory import AdvisorySignalSource, SignalRefresher, SignalReport

__all__ = ["AdvisorySignalSource", "SignalRefresher", "SignalReport"]
