from dataclasses import dataclass
from typing import Protocol, Optional
from datetime import datetime


@dataclass
class TokenRecordDto:
    jti: str
    user_id: str
    kind: str
    active_role: Optional[str]
    issued_at: datetime
    expires_at: datetime
    revoked_at: Optional[datetime]
    replaced_by: Optional[str]


class TokenStore(Protocol):
    def add(self, jti: str, user_id: str, kind: str, active_role: Optional[str], expires_at: datetime) -> TokenRecordDto:
        ...

    def get(self, jti: str) -> Optional[TokenRecordDto]:
        ...

    def revoke(self, jti: str, now: datetime, replaced_by: Optional[str] = None) -> bool:
        """Compare-and-set on revoked_at IS NULL; True only for the caller that revoked it."""
        ...

    def revoke_all_for_user(self, user_id: str, now: datetime) -> int:
        ...

    def cleanup_expired(self, now: datetime) -> int:
        ...
