from propbind.engine.dispatcher import PathMatchPolicy, ReactivityDispatcher
from propbind.engine.resolution import PropertyState, ResolutionEngine, Subscription

__all__ = [
    "PathMatchPolicy",
    "PropertyState",
    "ReactivityDispatcher",
    "ResolutionEngine",
    "Subscription",
]
