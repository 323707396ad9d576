import datetime
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from src.compliance.models.audit_models import AuditEntry, AuditQuery

logger = logging.getLogger("compliance_audit")


class AuditRepository(ABC):
    """Persistence collaborator for audit entries."""

    @abstractmethod
    def create_entry(self, entry: AuditEntry) -> AuditEntry:
        pass

    @abstractmethod
    def get_entries_by_session(self, session_id: str) -> List[AuditEntry]:
        pass

    @abstractmethod
    def query_entries(self, query: AuditQuery) -> List[AuditEntry]:
        pass


def _apply_query(entries: List[AuditEntry], query: AuditQuery) -> List[AuditEntry]:
    """Filter, order newest first, then page."""
    matched = [entry for entry in entries if query.matches(entry)]
    matched.sort(key=lambda entry: entry.timestamp, reverse=True)
    return matched[query.offset:query.offset + query.limit]


class InMemoryAuditRepository(AuditRepository):
    """Audit store kept in process memory, oldest entries dropped past max_entries."""

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()

    def create_entry(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            self._entries.append(entry)
            if self.max_entries and len(self._entries) > self.max_entries:
                self._entries = self._entries[-self.max_entries:]
        return entry

    def get_entries_by_session(self, session_id: str) -> List[AuditEntry]:
        with self._lock:
            entries = list(self._entries)
        return [entry for entry in entries if entry.session_id == session_id]

    def query_entries(self, query: AuditQuery) -> List[AuditEntry]:
        with self._lock:
            entries = list(self._entries)
        return _apply_query(entries, query)


class JsonFileAuditRepository(AuditRepository):
    """
    Audit store writing one JSON file per entry.

    Recent entries are also kept in an in-memory buffer; reads scan the
    storage directory so entries written by earlier processes are included.
    """

    def __init__(self, storage_path: str, buffer_size: int = 100, retention_days: int = 365):
        """
        Initialize the file-backed audit store.

        Args:
            storage_path: Directory holding one <entry_id>.json per entry
            buffer_size: Number of recent entries kept in memory
            retention_days: Default age used by purge_old_entries
        """
        self.storage_path = storage_path
        self.buffer_size = buffer_size
        self.retention_days = retention_days
        self.in_memory_buffer: List[AuditEntry] = []
        self._lock = threading.Lock()
        os.makedirs(self.storage_path, exist_ok=True)

    def create_entry(self, entry: AuditEntry) -> AuditEntry:
        entry_path = os.path.join(self.storage_path, f"{entry.entry_id}.json")
        with open(entry_path, 'w') as f:
            json.dump(entry.to_dict(), f, indent=2, default=str)

        with self._lock:
            self.in_memory_buffer.append(entry)
            if len(self.in_memory_buffer) > self.buffer_size:
                self.in_memory_buffer = self.in_memory_buffer[-self.buffer_size:]
        return entry

    def get_entries_by_session(self, session_id: str) -> List[AuditEntry]:
        entries = [entry for entry in self._load_all() if entry.session_id == session_id]
        entries.sort(key=lambda entry: entry.timestamp)
        return entries

    def query_entries(self, query: AuditQuery) -> List[AuditEntry]:
        return _apply_query(self._load_all(), query)

    def purge_old_entries(self, days: Optional[int] = None) -> int:
        """
        Delete entry files older than the retention period.

        Args:
            days: Number of days to keep (default: retention_days)

        Returns:
            Number of entries purged
        """
        retention_days = days if days is not None else self.retention_days
        cutoff = datetime.datetime.now() - datetime.timedelta(days=retention_days)
        purged_count = 0

        for filename in self._entry_files():
            file_path = os.path.join(self.storage_path, filename)
            entry = self._read_entry(file_path)
            if entry is not None and entry.timestamp < cutoff:
                os.remove(file_path)
                purged_count += 1

        with self._lock:
            self.in_memory_buffer = [e for e in self.in_memory_buffer if e.timestamp >= cutoff]

        logger.info(f"Purged {purged_count} audit entries older than {retention_days} days")
        return purged_count

    def _entry_files(self) -> List[str]:
        return [f for f in os.listdir(self.storage_path) if f.endswith('.json')]

    def _load_all(self) -> List[AuditEntry]:
        entries = []
        for filename in self._entry_files():
            entry = self._read_entry(os.path.join(self.storage_path, filename))
            if entry is not None:
                entries.append(entry)
        return entries

    def _read_entry(self, file_path: str) -> Optional[AuditEntry]:
        try:
            with open(file_path, 'r') as f:
                return AuditEntry.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error reading audit file {file_path}: {str(e)}")
            return None
