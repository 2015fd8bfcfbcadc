from dataclasses import dataclass
from typing import Protocol, Optional
from datetime import datetime

from ...models import OtpStatus


@dataclass
class OtpRecordDto:
    id: str
    phone: str
    role: str
    purpose: str
    code_hash: str
    salt: str
    status: OtpStatus
    attempts_remaining: int
    issued_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime]


class OtpStore(Protocol):
    def replace(self, phone: str, role: str, purpose: str, code_hash: str, salt: str,
                issued_at: datetime, expires_at: datetime, attempts: int) -> OtpRecordDto:
        """Supersede any live record for the key and store a new one."""
        ...

    def get_current(self, phone: str, role: str, purpose: str) -> Optional[OtpRecordDto]:
        """Most recent record for the key that has not been superseded."""
        ...

    def register_failure(self, record_id: str) -> Optional[int]:
        """Atomically spend one attempt; returns attempts left, None if the record is no longer live."""
        ...

    def consume(self, record_id: str, now: datetime) -> bool:
        """Compare-and-set issued -> verified. Only one caller can ever get True."""
        ...

    def shorten_expiry(self, record_id: str, expires_at: datetime) -> None:
        ...

    def cleanup_expired(self, now: datetime) -> int:
        ...
