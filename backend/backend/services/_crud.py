from __future__ import annotations
from typing import Any
from sqlalchemy.orm import Session

def commit_refresh(db: Session, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def apply_changes(obj, changes: dict[str, Any]) -> dict[str, Any]:
    """Set attributes from a PATCH payload; returns the fields that actually changed."""
    changed: dict[str, Any] = {}
    for key, value in changes.items():
        if getattr(obj, key) != value:
            setattr(obj, key, value)
            changed[key] = value
    return changed
