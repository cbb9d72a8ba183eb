"""Admission control for content-addressed requests.

The gate combines a permanent allow set, a bounded decision cache and a graph
size resolver to decide whether a root identifier fits within the quota.
"""

from .cache import DecisionCache
from .gate import AdmissionGate
from .pinned import PermanentAllowSet
from .resolver import GraphSizeResolver

__all__ = ["AdmissionGate", "DecisionCache", "GraphSizeResolver", "PermanentAllowSet"]
