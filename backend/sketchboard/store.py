import logging
from typing import Any, Iterable, List, Sequence, Union

from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import get_db
from .models import Entry

logger = logging.getLogger(__name__)

Key = Union[str, Sequence[str]]

KEY_SEPARATOR = "/"


class StoreError(Exception):
    """Raised when the underlying database fails a read or write."""


def encode_key(key: Key) -> str:
    if isinstance(key, str):
        return key
    return KEY_SEPARATOR.join(str(part) for part in key)


class KeyValueStore:
    """
    Generic key-value storage on top of a SQLAlchemy session.

    Keys are tuples of strings (or pre-joined strings). ``list`` returns the
    values under a key prefix in no particular order.
    """

    def __init__(self, db: Session):
        self.db = db

    def put(self, key: Key, record: Any):
        try:
            self.db.merge(Entry(key=encode_key(key), value=record))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to write {encode_key(key)!r}: {e}", exc_info=True)
            raise StoreError("Failed to save record.") from e

    def list(self, prefix: Key) -> List[Any]:
        pattern = encode_key(prefix) + KEY_SEPARATOR
        try:
            entries: Iterable[Entry] = self.db.query(Entry)\
                .filter(Entry.key.startswith(pattern, autoescape=True))\
                .all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to list {pattern!r}: {e}", exc_info=True)
            raise StoreError("Failed to read records.") from e
        return [entry.value for entry in entries if entry.value is not None]


def get_store(db: Session = Depends(get_db)) -> KeyValueStore:
    return KeyValueStore(db)
