"""Identity and role model consumed by the workflow engine."""

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Closed set of roles an authenticated identity can hold."""
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    FINANCE = "FINANCE"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Identity:
    """
    Authenticated actor as delivered by the identity provider.
    
    Identities compare and hash by ``id`` only; display name, role and
    manager link are carried along for authorization and audit rendering.
    ``issued_at`` is when the provider vouched for those attributes (the
    token's ``iat``), or None for identities built in-process.
    """
    
    id: int
    display_name: str = field(compare=False)
    role: Role = field(compare=False)
    manager_id: Optional[int] = field(default=None, compare=False)
    issued_at: Optional[dt.datetime] = field(default=None, compare=False)
    
    @property
    def can_read_any_claim(self) -> bool:
        return self.role in (Role.FINANCE, Role.ADMIN)
