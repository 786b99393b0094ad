from ghrelay.proxy import GhRelay

__all__ = ["GhRelay"]
