from datetime import datetime
from typing import Optional
from sqlalchemy import delete, update
from sqlmodel import Session, select

from .....models import AuthToken
from .....application.ports.token_store import TokenStore, TokenRecordDto


class SqlTokenStore(TokenStore):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, rec: AuthToken) -> TokenRecordDto:
        return TokenRecordDto(
            jti=rec.jti,
            user_id=rec.user_id,
            kind=rec.kind,
            active_role=rec.active_role,
            issued_at=rec.issued_at,
            expires_at=rec.expires_at,
            revoked_at=rec.revoked_at,
            replaced_by=rec.replaced_by,
        )

    def add(self, jti: str, user_id: str, kind: str, active_role: Optional[str], expires_at: datetime) -> TokenRecordDto:
        rec = AuthToken(jti=jti, user_id=user_id, kind=kind, active_role=active_role, expires_at=expires_at)
        self.session.add(rec)
        self.session.commit()
        self.session.refresh(rec)
        return self._to_dto(rec)

    def get(self, jti: str) -> Optional[TokenRecordDto]:
        rec = self.session.exec(select(AuthToken).where(AuthToken.jti == jti)).first()
        return self._to_dto(rec) if rec else None

    def revoke(self, jti: str, now: datetime, replaced_by: Optional[str] = None) -> bool:
        result = self.session.exec(
            update(AuthToken)
            .where(AuthToken.jti == jti, AuthToken.revoked_at.is_(None))
            .values(revoked_at=now, replaced_by=replaced_by)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    def revoke_all_for_user(self, user_id: str, now: datetime) -> int:
        result = self.session.exec(
            update(AuthToken)
            .where(AuthToken.user_id == user_id, AuthToken.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount or 0

    def cleanup_expired(self, now: datetime) -> int:
        result = self.session.exec(
            delete(AuthToken)
            .where(AuthToken.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount or 0
