"""proxypal: local control plane for an AI API proxy and a Copilot bridge.

Supervises the proxy process (and optionally the Copilot bridge), persists
the user's configuration, reconciles running processes when it changes, and
serves a control API over a Unix domain socket.
"""

__version__ = "0.1.0"
