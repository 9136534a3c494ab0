from .store import DirectoryStore, InMemoryStore, PersistenceStore

__all__ = ["DirectoryStore", "InMemoryStore", "PersistenceStore"]
