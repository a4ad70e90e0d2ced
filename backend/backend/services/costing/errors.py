from __future__ import annotations


class RecordNotFound(LookupError):
    def __init__(self, record_type: str, record_id: str):
        super().__init__(f"{record_type} not found: {record_id}")
        self.record_type = record_type
        self.record_id = record_id


class RecordLocked(ValueError):
    """The owning quote or job is archived; its cost records are read-only."""
