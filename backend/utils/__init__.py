"""
Utils Package

Provides utility modules for:
- request: client address extraction behind proxies
"""

from .request import get_client_ip

__all__ = [
    'get_client_ip',
]
