"""
Storage routing.

The router is what feature code talks to; it picks the local or the
remote backend per action based on the user's plan.
"""

from .connectivity import ConnectivityProbe, HttpConnectivityProbe, StaticConnectivity
from .router import StorageRouter, SyncStatus

__all__ = [
    "ConnectivityProbe",
    "HttpConnectivityProbe",
    "StaticConnectivity",
    "StorageRouter",
    "SyncStatus",
]
