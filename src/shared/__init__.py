"""
Shared Kernel Module
====================

Shared infrastructure used by the workflow bounded context and the HTTP app:
structured logging and API middleware.

DO NOT add workflow or SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
