"""
Core modules for the generation gateway.

This package contains quota evaluation, the feature catalogue,
cache invalidation rules and the generation orchestrator.
"""
