"""Storage for probe results and fairness analyses."""
from .result_store import ProbeResultStore

__all__ = ["ProbeResultStore"]
