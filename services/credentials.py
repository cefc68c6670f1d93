"""Credential store: lookup-by-identity over a synchronous backend.

All methods here block. Callers reach them only through
`services.bridge.BlockingBridge`.
"""

import threading

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol

from pymongo import MongoClient
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from models.users import Credential
from utils.exceptions import (
    CredentialConflict,
    CredentialNotFound,
    StorageError,
    StorageUnavailable,
)


class CredentialStore(Protocol):
    def get_by_email(self, email: str) -> Credential | None: ...

    def get_by_subject(self, subject: str) -> Credential | None: ...

    def create(self, credential: Credential) -> Credential: ...

    def update_name(self, subject: str, name: str) -> Credential: ...

    def ensure_indexes(self) -> None: ...

    def ping(self) -> None: ...


def _normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def _translate_errors():
    """Map pymongo failures onto the storage error taxonomy."""
    try:
        yield
    except DuplicateKeyError as e:
        raise CredentialConflict() from e
    except (ConnectionFailure, ServerSelectionTimeoutError) as e:
        raise StorageUnavailable() from e
    except PyMongoError as e:
        raise StorageError() from e


class InMemoryCredentialStore:
    """Thread-safe in-process store, used in development and tests."""

    def __init__(self):
        self._by_subject: dict[str, Credential] = {}
        self._subject_by_email: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_by_email(self, email: str) -> Credential | None:
        with self._lock:
            subject = self._subject_by_email.get(_normalize_email(email))
            return self._by_subject.get(subject) if subject else None

    def get_by_subject(self, subject: str) -> Credential | None:
        with self._lock:
            return self._by_subject.get(subject)

    def create(self, credential: Credential) -> Credential:
        email = _normalize_email(credential.email)
        with self._lock:
            if email in self._subject_by_email:
                raise CredentialConflict()
            self._by_subject[credential.subject] = credential
            self._subject_by_email[email] = credential.subject
        return credential

    def update_name(self, subject: str, name: str) -> Credential:
        with self._lock:
            current = self._by_subject.get(subject)
            if current is None:
                raise CredentialNotFound()
            updated = current.model_copy(
                update={"name": name, "updated_at": datetime.now(timezone.utc)}
            )
            self._by_subject[subject] = updated
            return updated

    def ensure_indexes(self) -> None:
        return None

    def ping(self) -> None:
        return None


class MongoCredentialStore:
    """Credential store backed by a MongoDB collection through pymongo."""

    def __init__(self, client: MongoClient, database_name: str, collection: str = "credentials"):
        self.client = client
        self.collection = client[database_name][collection]

    @classmethod
    def from_url(cls, url: str, database_name: str) -> "MongoCredentialStore":
        return cls(MongoClient(url, serverSelectionTimeoutMS=5000), database_name)

    def ensure_indexes(self) -> None:
        with _translate_errors():
            self.collection.create_index("email", unique=True)
            self.collection.create_index("subject", unique=True)

    def get_by_email(self, email: str) -> Credential | None:
        with _translate_errors():
            document = self.collection.find_one({"email": _normalize_email(email)})
        return self._to_credential(document)

    def get_by_subject(self, subject: str) -> Credential | None:
        with _translate_errors():
            document = self.collection.find_one({"subject": subject})
        return self._to_credential(document)

    def create(self, credential: Credential) -> Credential:
        document = credential.model_dump()
        document["email"] = _normalize_email(credential.email)
        with _translate_errors():
            self.collection.insert_one(document)
        return credential

    def update_name(self, subject: str, name: str) -> Credential:
        with _translate_errors():
            result = self.collection.update_one(
                {"subject": subject},
                {"$set": {"name": name, "updated_at": datetime.now(timezone.utc)}},
            )
        if result.matched_count == 0:
            raise CredentialNotFound()
        updated = self.get_by_subject(subject)
        if updated is None:
            raise CredentialNotFound()
        return updated

    def ping(self) -> None:
        with _translate_errors():
            self.client.admin.command("ping")

    @staticmethod
    def _to_credential(document: dict | None) -> Credential | None:
        if document is None:
            return None
        document = {key: value for key, value in document.items() if key != "_id"}
        return Credential(**document)

