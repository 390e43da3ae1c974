from .store import InMemorySessionStore, RedisSessionStore, SessionStore

__all__ = ["SessionStore", "RedisSessionStore", "InMemorySessionStore"]
