"""
Shared Infrastructure
=====================

Low-level technical concerns:
- Structured JSON logging with correlation IDs
- Latency logging helpers
"""
