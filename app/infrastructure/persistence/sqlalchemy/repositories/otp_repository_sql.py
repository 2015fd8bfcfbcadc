import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import case, delete, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .....models import OTPCode, OtpStatus
from .....application.ports.otp_store import OtpStore, OtpRecordDto

logger = logging.getLogger(__name__)


class SqlOtpStore(OtpStore):
    """OTP records with state changes expressed as conditional UPDATEs.

    Every transition out of `issued` is a single statement guarded on the
    current status, so the affected row count tells the caller whether it won.
    """

    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, rec: OTPCode) -> OtpRecordDto:
        return OtpRecordDto(
            id=rec.id,
            phone=rec.phone,
            role=rec.role,
            purpose=rec.purpose,
            code_hash=rec.code_hash,
            salt=rec.salt,
            status=OtpStatus(rec.status),
            attempts_remaining=rec.attempts_remaining,
            issued_at=rec.issued_at,
            expires_at=rec.expires_at,
            consumed_at=rec.consumed_at,
        )

    def _supersede(self, phone: str, role: str, purpose: str) -> None:
        self.session.exec(
            update(OTPCode)
            .where(
                OTPCode.phone == phone,
                OTPCode.role == role,
                OTPCode.purpose == purpose,
                OTPCode.status == OtpStatus.ISSUED.value,
            )
            .values(status=OtpStatus.SUPERSEDED.value)
        )

    def replace(self, phone: str, role: str, purpose: str, code_hash: str, salt: str,
                issued_at: datetime, expires_at: datetime, attempts: int) -> OtpRecordDto:
        for attempt in range(2):
            self._supersede(phone, role, purpose)
            rec = OTPCode(
                phone=phone,
                role=role,
                purpose=purpose,
                code_hash=code_hash,
                salt=salt,
                attempts_remaining=attempts,
                issued_at=issued_at,
                expires_at=expires_at,
            )
            self.session.add(rec)
            try:
                self.session.commit()
            except IntegrityError:
                # A concurrent request inserted a live record between our supersede and insert
                self.session.rollback()
                if attempt:
                    raise
                logger.info("Concurrent OTP issue detected, retrying supersede")
                continue
            self.session.refresh(rec)
            return self._to_dto(rec)
        raise RuntimeError("unreachable")

    def get_current(self, phone: str, role: str, purpose: str) -> Optional[OtpRecordDto]:
        rec = self.session.exec(
            select(OTPCode)
            .where(
                OTPCode.phone == phone,
                OTPCode.role == role,
                OTPCode.purpose == purpose,
                OTPCode.status != OtpStatus.SUPERSEDED.value,
            )
            .order_by(OTPCode.issued_at.desc())
        ).first()
        return self._to_dto(rec) if rec else None

    def register_failure(self, record_id: str) -> Optional[int]:
        result = self.session.exec(
            update(OTPCode)
            .where(
                OTPCode.id == record_id,
                OTPCode.status == OtpStatus.ISSUED.value,
                OTPCode.attempts_remaining > 0,
            )
            .values(
                attempts_remaining=OTPCode.attempts_remaining - 1,
                status=case(
                    (OTPCode.attempts_remaining <= 1, OtpStatus.EXHAUSTED.value),
                    else_=OTPCode.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        if result.rowcount != 1:
            return None
        rec = self.session.get(OTPCode, record_id)
        return rec.attempts_remaining if rec else None

    def consume(self, record_id: str, now: datetime) -> bool:
        result = self.session.exec(
            update(OTPCode)
            .where(
                OTPCode.id == record_id,
                OTPCode.status == OtpStatus.ISSUED.value,
                OTPCode.attempts_remaining > 0,
                OTPCode.expires_at > now,
            )
            .values(status=OtpStatus.VERIFIED.value, consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    def shorten_expiry(self, record_id: str, expires_at: datetime) -> None:
        self.session.exec(
            update(OTPCode)
            .where(OTPCode.id == record_id, OTPCode.expires_at > expires_at)
            .values(expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()

    def cleanup_expired(self, now: datetime) -> int:
        result = self.session.exec(
            delete(OTPCode)
            .where(or_(OTPCode.expires_at < now, OTPCode.status == OtpStatus.SUPERSEDED.value))
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount or 0
