from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


@dataclass
class Account:
    id: str
    username: str
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_at: Optional[datetime] = None
    meta: Dict | None = None

    @classmethod
    def new(cls, username: str, *, is_active: bool = True) -> "Account":
        return cls(id=str(uuid.uuid4()), username=username, is_active=is_active)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
