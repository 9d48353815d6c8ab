"""Shared libraries for model hosting.

Subpackages:
- ``modelhost.common``: configuration, logging, and metrics.
- ``modelhost.backends``: model artifact resolution and backend construction.

Usage:
- Import stable, reusable functionality from here to keep service code lean.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
