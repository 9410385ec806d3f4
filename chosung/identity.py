"""Anonymous identity bootstrap.

Players get an opaque id on first visit; the id travels back in a signed
"<id>.<hmac>" token (the player_token cookie). A token minted elsewhere with
the same secret works as a custom sign-in token.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from .errors import AuthFailure
from .logging_utils import get_logger

logger = get_logger("chosung.identity")

_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass(frozen=True)
class Identity:
    id: Optional[str]
    is_ready: bool


NOT_READY = Identity(None, False)


class IdentityProvider:
    def __init__(self, secret: str):
        self._secret = secret.encode()

    def _sign(self, uid: str) -> str:
        return hmac.new(self._secret, uid.encode(), hashlib.sha256).hexdigest()

    def sign_token(self, uid: str) -> str:
        return f"{uid}.{self._sign(uid)}"

    def sign_in_anonymously(self) -> Identity:
        uid = uuid.uuid4().hex
        logger.info("anonymous_sign_in", extra={"user_id": uid})
        return Identity(uid, True)

    def sign_in_with_token(self, token: str) -> Identity:
        try:
            uid, sig = (token or "").rsplit(".", 1)
        except ValueError:
            raise AuthFailure("malformed token")
        if not _ID_RE.match(uid):
            raise AuthFailure("malformed token")
        if not hmac.compare_digest(self._sign(uid), sig):
            raise AuthFailure("bad token signature")
        return Identity(uid, True)

    def resolve(self, token: Optional[str]) -> Identity:
        """Like sign_in_with_token, but an unready identity instead of an error."""
        if not token:
            return NOT_READY
        try:
            return self.sign_in_with_token(token)
        except AuthFailure as exc:
            logger.info("token_rejected", extra={"error": str(exc)})
            return NOT_READY
