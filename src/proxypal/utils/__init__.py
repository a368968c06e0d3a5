"""Utility helpers shared across proxypal packages."""
