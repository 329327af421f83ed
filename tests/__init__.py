"""
Test suite for the resilience and security monitoring layer.

This module contains:
- Unit tests for all core components
- Integration tests for retry, health and scheduling workflows
- Shared fixtures with a manual clock and in-memory store
"""

__version__ = "1.0.0"
