"""Domain models for the user directory."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


@dataclass(frozen=True)
class User:
    """Represents a user record stored in the ``users`` table."""

    id: int
    name: str
    email: str
    created_at: Optional[datetime]

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


__all__ = ["User"]
