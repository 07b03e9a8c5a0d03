"""
Core Layer

Configuration, structured logging, the exception taxonomy and the resilience
primitives (circuit breakers, bounded priority pool) shared by every other
layer of the possibility engine.
"""
