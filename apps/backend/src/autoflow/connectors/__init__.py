"""Clients for external services the generator consults."""

from .discovery import DiscoveryClient, NodeConfigVerdict

__all__ = ["DiscoveryClient", "NodeConfigVerdict"]
