"""
Possibility Engine

Concurrent multi-provider possibility generation: permutation enumeration,
priority scheduling under a concurrency budget, per-provider circuit
breaking, framed event streaming and an explicit generation lifecycle.
"""

__version__ = "1.0.0"
