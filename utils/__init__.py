"""
Shared utilities for the resilience and security monitoring layer.

This module provides common functionality used across the layer:
- Structured logging with security and audit levels
- Log category routing and correlation IDs
"""

__version__ = "1.0.0"
