"""
Persistence gateway for saved form schemas.

Saved forms live in a single named slot of a key-value blob store, stored as a
JSON array of schema documents. The gateway is injected into the session
controller, so the backing store can be a directory on disk, the Streamlit
session or plain memory.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import logging

import streamlit as st
from pydantic import ValidationError

from .exceptions import PersistenceError
from .form_models import FormSchema

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "forms"
DEFAULT_STORAGE_DIR = ".form_store"


class BlobStore:
    """Minimal key-value text store (the shape of browser local storage)."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryBlobStore(BlobStore):
    """Blob store held in a dictionary; contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value


class FileBlobStore(BlobStore):
    """
    Blob store keeping one ``<key>.json`` file per slot in a directory.

    Writes go to a temporary file in the same directory which then replaces
    the slot file, so a failed write leaves the previous contents intact.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _slot_path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._slot_path(key)
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(temp_path, self._slot_path(key))
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise


class SessionStateBlobStore(BlobStore):
    """Blob store backed by ``st.session_state``; lives as long as the browser session."""

    def __init__(self, prefix: str = "blob_store_"):
        self.prefix = prefix

    def get_item(self, key: str) -> Optional[str]:
        return st.session_state.get(f"{self.prefix}{key}")

    def set_item(self, key: str, value: str) -> None:
        st.session_state[f"{self.prefix}{key}"] = value


class FormRepository:
    """
    Load and save the ordered collection of saved form schemas.

    ``save`` replaces the whole collection; ``append`` adds one schema and
    keeps every stored entry as it is.
    """

    def __init__(self, blob_store: BlobStore, key: str = DEFAULT_STORAGE_KEY):
        self.blob_store = blob_store
        self.key = key

    def _read_documents(self) -> List[Any]:
        """Raw stored documents, including entries the models would reject."""
        try:
            raw = self.blob_store.get_item(self.key)
        except (IOError, OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read saved forms from slot '{self.key}': {e}")
            raise PersistenceError(self.key, "load", e) from e

        if raw is None or not raw.strip():
            return []

        try:
            documents = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Saved forms in slot '{self.key}' are not valid JSON: {e}")
            raise PersistenceError(self.key, "load", e) from e

        if not isinstance(documents, list):
            logger.error(f"Saved forms in slot '{self.key}' are not a JSON array")
            raise PersistenceError(self.key, "load",
                                   message=f"Saved forms in slot '{self.key}' are not a list")
        return documents

    def _write_documents(self, documents: List[Any]) -> None:
        try:
            payload = json.dumps(documents, ensure_ascii=False)
            self.blob_store.set_item(self.key, payload)
        except (IOError, OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save forms to slot '{self.key}': {e}", exc_info=True)
            raise PersistenceError(self.key, "save", e) from e

    @staticmethod
    def _parse_documents(documents: List[Any]) -> List[FormSchema]:
        schemas: List[FormSchema] = []
        for index, document in enumerate(documents):
            try:
                schemas.append(FormSchema.model_validate(document))
            except ValidationError as e:
                logger.warning(f"Skipping invalid saved form at index {index}: {e}")
        return schemas

    def load(self) -> List[FormSchema]:
        """
        Load all saved schemas in stored order.

        Entries that do not validate are skipped but stay in the slot.

        Returns:
            List of schemas; empty when the slot has never been written

        Raises:
            PersistenceError: If the slot cannot be read or is not a JSON array
        """
        schemas = self._parse_documents(self._read_documents())
        logger.info(f"Loaded {len(schemas)} saved forms from slot '{self.key}'")
        return schemas

    def append(self, schema: FormSchema) -> List[FormSchema]:
        """
        Add one schema to the end of the stored collection.

        The stored documents are extended as they are, so entries that fail
        validation are written back untouched.

        Returns:
            The loadable schemas after the append, in stored order

        Raises:
            PersistenceError: If the slot cannot be read or written
        """
        documents = self._read_documents()
        documents.append(schema.to_dict())
        self._write_documents(documents)
        logger.info(f"Appended form '{schema.name}' to slot '{self.key}' ({len(documents)} entries)")
        return self._parse_documents(documents)

    def save(self, schemas: Sequence[FormSchema]) -> None:
        """
        Replace the stored collection.

        Raises:
            PersistenceError: If serialization or the write fails
        """
        self._write_documents([schema.to_dict() for schema in schemas])
        logger.info(f"Saved {len(schemas)} forms to slot '{self.key}'")


def create_form_repository(config: Dict[str, Any]) -> FormRepository:
    """
    Build the repository selected by the ``storage`` configuration section.

    Args:
        config: Application configuration dictionary

    Returns:
        FormRepository over a file, session or memory blob store
    """
    storage = config.get('storage', {})
    backend = storage.get('backend', 'file')
    key = storage.get('key', DEFAULT_STORAGE_KEY)

    if backend == 'memory':
        blob_store: BlobStore = MemoryBlobStore()
    elif backend == 'session':
        blob_store = SessionStateBlobStore()
    else:
        if backend != 'file':
            logger.warning(f"Unknown storage backend '{backend}', using file storage")
        blob_store = FileBlobStore(Path(storage.get('directory', DEFAULT_STORAGE_DIR)))

    logger.info(f"Using {type(blob_store).__name__} with slot '{key}'")
    return FormRepository(blob_store, key)
