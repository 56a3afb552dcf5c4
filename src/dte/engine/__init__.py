# src/dte/engine/__init__.py
"""
Queue-facing side of the engine.

- claimer: claims runnable tasks
- spawner: resolves spawn defaults and inserts tasks
- worker: blocking poll loop
- background: worker loop on a thread (import dte.engine.background directly)
"""

from .claimer import Claimer
from .spawner import Spawner
from .worker import Worker

__all__ = ["Claimer", "Spawner", "Worker"]
