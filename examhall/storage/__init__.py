from examhall.storage.inmemory import InMemoryAttemptRepository
from examhall.storage.repo import AttemptRepository

__all__ = ["AttemptRepository", "InMemoryAttemptRepository"]
