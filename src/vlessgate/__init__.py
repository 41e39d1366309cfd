"""VlessGate: VLESS over WebSocket tunnel server."""

__version__ = "0.1.0"
