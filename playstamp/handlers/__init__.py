from playstamp.handlers.listenbrainz import create_app, routes

__all__ = ["create_app", "routes"]
