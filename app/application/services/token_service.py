import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import jwt

from ..ports.token_store import TokenRecordDto, TokenStore
from ...exceptions import NoAccount, TokenExpired, TokenInvalid
from ...models import TokenKind
from ...utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    role: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "bearer"


@dataclass
class TokenService:
    """Mints and verifies signed JWTs.

    Access tokens are stateless. Refresh and role-selection tokens are
    additionally recorded in the token store so they can be revoked and
    rotated exactly once.
    """

    token_store: TokenStore
    secret: str
    algorithm: str = "HS256"
    issuer: Optional[str] = None
    access_ttl_seconds: int = 900
    refresh_ttl_seconds: int = 30 * 24 * 3600
    selection_ttl_seconds: int = 300

    def _encode(self, claims: Dict[str, Any], kind: TokenKind, ttl_seconds: int,
                jti: Optional[str] = None) -> Tuple[str, str]:
        now = utcnow()
        jti = jti or uuid.uuid4().hex
        to_encode = dict(claims)
        to_encode.update({
            "iat": now,
            "exp": now + timedelta(seconds=ttl_seconds),
            "jti": jti,
            "type": kind.value,
        })
        if self.issuer:
            to_encode["iss"] = self.issuer
        return jwt.encode(to_encode, self.secret, algorithm=self.algorithm), jti

    def issue(self, user_id: str, role: str, refresh_jti: Optional[str] = None) -> TokenPair:
        access_token, _ = self._encode({"sub": user_id, "role": role}, TokenKind.ACCESS, self.access_ttl_seconds)
        refresh_token, jti = self._encode({"sub": user_id}, TokenKind.REFRESH, self.refresh_ttl_seconds, jti=refresh_jti)
        self.token_store.add(
            jti=jti,
            user_id=user_id,
            kind=TokenKind.REFRESH.value,
            active_role=role,
            expires_at=utcnow() + timedelta(seconds=self.refresh_ttl_seconds),
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            role=role,
            expires_in=self.access_ttl_seconds,
            refresh_expires_in=self.refresh_ttl_seconds,
        )

    def verify(self, token: str, kind: TokenKind = TokenKind.ACCESS) -> Dict[str, Any]:
        """Check signature, expiry and token type. Touches no store."""
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub", "jti"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired()
        except jwt.InvalidTokenError as e:
            logger.debug(f"JWT rejected: {e}")
            raise TokenInvalid()
        if payload.get("type") != kind.value:
            raise TokenInvalid(f"Expected a {kind.value.replace('_', ' ')} token.")
        if kind == TokenKind.ACCESS and not payload.get("role"):
            raise TokenInvalid()
        return payload

    def _claim_once(self, token: str, kind: TokenKind, replaced_by: Optional[str] = None) -> TokenRecordDto:
        payload = self.verify(token, kind)
        record = self.token_store.get(payload["jti"])
        if record is None or record.user_id != payload["sub"] or record.kind != kind.value:
            raise TokenInvalid()
        if record.revoked_at is not None or not self.token_store.revoke(record.jti, utcnow(), replaced_by):
            # Presenting an already rotated token means it leaked; drop every session of the user
            revoked = self.token_store.revoke_all_for_user(record.user_id, utcnow())
            logger.warning(f"Reuse of {kind.value} token {record.jti} for user {record.user_id}, revoked {revoked} tokens")
            raise TokenInvalid("Token has already been used.")
        return record

    def rotate(self, refresh_token: str) -> Tuple[TokenRecordDto, str]:
        """Revoke a refresh token and reserve the jti of its successor.

        Returns the revoked record (carrying the role it was issued for) and
        the jti to pass to `issue`.
        """
        next_jti = uuid.uuid4().hex
        record = self._claim_once(refresh_token, TokenKind.REFRESH, replaced_by=next_jti)
        return record, next_jti

    def issue_selection_token(self, user_id: str, roles: List[str]) -> str:
        token, jti = self._encode({"sub": user_id, "roles": roles}, TokenKind.ROLE_SELECTION, self.selection_ttl_seconds)
        self.token_store.add(
            jti=jti,
            user_id=user_id,
            kind=TokenKind.ROLE_SELECTION.value,
            active_role=None,
            expires_at=utcnow() + timedelta(seconds=self.selection_ttl_seconds),
        )
        return token

    def consume_selection_token(self, token: str, role: Optional[str] = None) -> Dict[str, Any]:
        """Claim a selection token. A role outside the offered set leaves the token usable."""
        payload = self.verify(token, TokenKind.ROLE_SELECTION)
        offered = payload.get("roles") or []
        if role is not None and role not in offered:
            raise NoAccount(details={"role": role, "availableRoles": offered})
        self._claim_once(token, TokenKind.ROLE_SELECTION)
        return payload

    def revoke_refresh(self, refresh_token: str, user_id: str) -> bool:
        payload = self.verify(refresh_token, TokenKind.REFRESH)
        if payload["sub"] != user_id:
            raise TokenInvalid()
        return self.token_store.revoke(payload["jti"], utcnow())

    def revoke_all(self, user_id: str) -> int:
        return self.token_store.revoke_all_for_user(user_id, utcnow())
