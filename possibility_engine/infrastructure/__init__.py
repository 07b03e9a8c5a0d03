"""
Infrastructure Layer

Process-wide integrations with external systems (Prometheus metrics).
"""
