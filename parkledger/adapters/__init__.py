"""
Adapters layer - External integrations (hosted backend REST APIs, local mock).
"""

from .authenticator import BackendAuthenticator
from .firestore_client import FirestoreClient
from .memory_store import InMemoryBackend
from .storage_client import FirebaseStorageClient

__all__ = ["BackendAuthenticator", "FirestoreClient", "FirebaseStorageClient", "InMemoryBackend"]
