import hashlib
import logging
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import get_settings
from currency import normalize_currency_code
from models import Account

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class AuthError(ValueError):
    pass


class SessionRequired(AuthError):
    pass


def _serializer(salt: str) -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt=salt)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def _password_fingerprint(account: Account) -> str:
    # reset links stop working once the password they were issued for changes
    return hashlib.sha256(account.password_hash.encode("utf-8")).hexdigest()[:16]


def _normalize_email(email: str) -> str:
    clean = (email or "").strip().lower()
    if "@" not in clean or clean.startswith("@") or clean.endswith("@"):
        raise AuthError("Enter a valid email address")
    return clean


def _check_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise AuthError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.settings = get_settings()

    def _by_email(self, email: str) -> Optional[Account]:
        return self.session.scalar(
            select(Account).where(func.lower(Account.email) == email)
        )

    def _get(self, user_id: str) -> Account:
        account = self.session.get(Account, user_id)
        if not account:
            raise AuthError("Account not found")
        return account

    def sign_up(self, email: str, password: str) -> Account:
        clean_email = _normalize_email(email)
        _check_password(password)
        if self._by_email(clean_email):
            raise AuthError("An account with this email already exists")
        account = Account(email=clean_email, password_hash=hash_password(password))
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        logger.info(f"sign_up: user_id={account.id}")
        return account

    def issue_token(self, account: Account) -> str:
        return _serializer("session").dumps(
            {"u": account.id, "v": account.session_version}
        )

    def sign_in(self, email: str, password: str) -> str:
        try:
            clean_email = _normalize_email(email)
        except AuthError:
            raise AuthError("Invalid email or password") from None
        account = self._by_email(clean_email)
        if not account or not verify_password(password, account.password_hash):
            logger.info("sign_in_failed")
            raise AuthError("Invalid email or password")
        logger.info(f"sign_in: user_id={account.id}")
        return self.issue_token(account)

    def get_session(self, token: Optional[str]) -> Account:
        if not token:
            raise SessionRequired("Sign in required")
        max_age = self.settings.session_max_age_hours * 3600
        try:
            data = _serializer("session").loads(token, max_age=max_age)
        except SignatureExpired as exc:
            raise SessionRequired("Session expired") from exc
        except BadSignature as exc:
            raise SessionRequired("Sign in required") from exc

        account = self.session.get(Account, data.get("u"))
        if not account or account.session_version != data.get("v"):
            raise SessionRequired("Session expired")
        return account

    def sign_out(self, token: Optional[str]) -> None:
        """Invalidate every session of the token's account."""
        account = self.get_session(token)
        account.session_version += 1
        self.session.commit()
        logger.info(f"sign_out: user_id={account.id}")

    def request_password_reset(self, email: str) -> Optional[str]:
        try:
            clean_email = _normalize_email(email)
        except AuthError:
            return None
        account = self._by_email(clean_email)
        if not account:
            return None
        logger.info(f"password_reset_requested: user_id={account.id}")
        return _serializer("password-reset").dumps(
            {"u": account.id, "p": _password_fingerprint(account)}
        )

    def confirm_password_reset(self, token: str, new_password: str) -> Account:
        max_age = self.settings.reset_max_age_minutes * 60
        try:
            data = _serializer("password-reset").loads(token, max_age=max_age)
        except BadSignature as exc:
            raise AuthError(
                "Invalid or expired reset link. Please request a new one."
            ) from exc

        account = self.session.get(Account, data.get("u"))
        if not account or _password_fingerprint(account) != data.get("p"):
            raise AuthError("Invalid or expired reset link. Please request a new one.")
        _check_password(new_password)

        account.password_hash = hash_password(new_password)
        account.session_version += 1
        self.session.commit()
        logger.info(f"password_reset: user_id={account.id}")
        return account

    def get_metadata(self, user_id: str) -> dict[str, Optional[str]]:
        account = self._get(user_id)
        return {"currency": account.currency_code or self.settings.default_currency}

    def update_metadata(
        self, user_id: str, *, currency: Optional[str] = None
    ) -> dict[str, Optional[str]]:
        account = self._get(user_id)
        if currency is not None:
            account.currency_code = normalize_currency_code(currency)
        self.session.commit()
        return self.get_metadata(user_id)
