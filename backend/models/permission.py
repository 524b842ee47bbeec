"""
Portail Citoyen - Modeles Permissions (attributions)
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator


class GrantRequest(BaseModel):
    """Attribution / synchronisation de permissions (SUPER_ADMIN)"""
    permissions: List[str]
    expires_at: Optional[datetime] = None

    @field_validator("permissions")
    @classmethod
    def strip_codes(cls, v):
        return [c.strip() for c in v if c and c.strip()]


class RevokeRequest(BaseModel):
    permissions: List[str]
