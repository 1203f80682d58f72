"""Crypto fairness monitoring: mempool/MEV observation and fairness scoring for distribution events."""

__version__ = "0.1.0"
