"""
Simulcast server exposing the channel position over HTTP.

SimulcastServer is the distribution interface, responsible for:
- Answering "what is on now" and "what is on next" queries
- Advertising itself on the local network via mDNS
"""

__all__ = [
    "API_PATH",
    "NO_CACHE_HEADERS",
    "SERVICE_TYPE",
    "SimulcastServer",
]

from .server import API_PATH, NO_CACHE_HEADERS, SERVICE_TYPE, SimulcastServer
