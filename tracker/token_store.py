"""
Durable credential store (access token, refresh token, expiry) backed by SQLAlchemy.
Single stored set; the tracker has exactly one Dropbox account connected at a time.
"""
from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from tracker.models import StoredCredential

TOKEN_KEY = "dbx_access_token"
REFRESH_KEY = "dbx_refresh_token"
EXPIRY_KEY = "dbx_token_expiry"

CREDENTIAL_KEYS = (TOKEN_KEY, REFRESH_KEY, EXPIRY_KEY)


class CredentialStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, key: str) -> str | None:
        db: Session = self._session_factory()
        try:
            row = db.get(StoredCredential, key)
            return row.value if row is not None else None
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        db: Session = self._session_factory()
        try:
            row = db.get(StoredCredential, key)
            if row is None:
                db.add(StoredCredential(key=key, value=value))
            else:
                row.value = value
            db.commit()
        finally:
            db.close()

    def remove(self, key: str) -> None:
        db: Session = self._session_factory()
        try:
            db.execute(delete(StoredCredential).where(StoredCredential.key == key))
            db.commit()
        finally:
            db.close()

    def clear(self) -> None:
        """Remove access token, refresh token and expiry in one transaction."""
        db: Session = self._session_factory()
        try:
            db.execute(delete(StoredCredential).where(StoredCredential.key.in_(CREDENTIAL_KEYS)))
            db.commit()
        finally:
            db.close()
