"""dagstore: persisted directed acyclic graphs with cycle-checked mutations."""

from dagstore.graph import (
    CancelToken,
    DagService,
    DictDagStore,
    Edge,
    Graph,
    Node,
    SqliteDagStore,
)

__version__ = "0.1.0"

__all__ = [
    "CancelToken",
    "DagService",
    "DictDagStore",
    "Edge",
    "Graph",
    "Node",
    "SqliteDagStore",
    "__version__",
]
