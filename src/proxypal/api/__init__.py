"""HTTP control API served by the daemon over a Unix domain socket."""

from .server import create_api_app

__all__ = ["create_api_app"]
