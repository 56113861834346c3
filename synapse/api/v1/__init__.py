"""
API v1 routers.
"""

from synapse.api.v1 import health, invoke

__all__ = ["health", "invoke"]
