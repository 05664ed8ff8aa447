from . import phases, sessions

__all__ = ["phases", "sessions"]
