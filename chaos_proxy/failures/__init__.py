from .decision import FailureDecision
from .prefix_table import PrefixFailureTable

__all__ = ["FailureDecision", "PrefixFailureTable"]
