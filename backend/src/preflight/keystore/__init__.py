"""Keystore persistence for the preflight module.

This module provides:
- An in-memory PKCS#12 keystore container
- A location-keyed storage contract with database and file backends
"""

from preflight.keystore.database_storage import KeystoreDatabaseStorage
from preflight.keystore.file_storage import KeystoreFileStorage
from preflight.keystore.keystore import KeyStore
from preflight.keystore.storage import KeystoreLocation, KeystoreStorage, KeystoreStorageError

__all__ = [
    "KeyStore",
    "KeystoreDatabaseStorage",
    "KeystoreFileStorage",
    "KeystoreLocation",
    "KeystoreStorage",
    "KeystoreStorageError",
]
