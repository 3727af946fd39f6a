"""Vocaline: anonymous 1:1 voice matchmaking and WebRTC signaling relay."""

__version__ = "0.1.0"
