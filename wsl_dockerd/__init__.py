"""
wsl-dockerd

Exposes the Docker daemon running in a WSL (or local Linux) guest over TCP,
secured with mutual TLS by default, and points this host's Docker CLI at it.
"""

__version__ = "0.3.0"
__license__ = "MIT"
