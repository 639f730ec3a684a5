# Overview: Service-layer operations for users; password hashing, generated credentials and account administration.

"""
User accounts and credentials.

WHY: Every action must be attributable. Uses bcrypt for password hashing
and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS)
- Minimum 8 characters; must contain uppercase, lowercase, digit and special char
- Generated passwords are handed back once as IssuedCredentials and never
  stored or readable again; the account is flagged first_login so the user
  must change it.
"""

from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass
from typing import Optional

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Store, User, Warehouse
from ..permissions import Action, Role
from ..validation import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
    require_text,
    validate_email,
)
from .concurrency import run_atomic
from .permission_service import Caller, require


SPECIAL_CHARS = "!@#$%^&*"


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


@dataclass(frozen=True)
class IssuedCredentials:
    """One-shot login details. Returned once; the password is not persisted."""
    email: str
    password: str

    def __repr__(self) -> str:
        return f"IssuedCredentials(email={self.email!r}, password='***')"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config["BCRYPT_ROUNDS"])
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def generate_password(length: Optional[int] = None) -> str:
    """Random password that always satisfies validate_password_strength."""
    length = max(length or current_app.config["CREDENTIAL_PASSWORD_LENGTH"], 8)
    pools = [string.ascii_uppercase, string.ascii_lowercase, string.digits, SPECIAL_CHARS]
    chars = [secrets.choice(pool) for pool in pools]
    everything = "".join(pools)
    chars += [secrets.choice(everything) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")
    return slug or "user"


def unique_generated_email(local_part: str, domain: str) -> str:
    """local@domain, or local1@domain, local2@domain... when taken."""
    candidate = local_part
    count = 1
    while email_taken(f"{candidate}@{domain}"):
        candidate = f"{local_part}{count}"
        count += 1
    return f"{candidate}@{domain}"


def email_taken(email: str, *, exclude_user_id: Optional[int] = None) -> bool:
    q = db.session.query(User.id).filter(db.func.lower(User.email) == email.lower())
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return db.session.query(q.exists()).scalar()


def get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def issue_user(
    *,
    name: str,
    email: str,
    role: Role,
    warehouse_id: Optional[int] = None,
    store_id: Optional[int] = None,
) -> tuple[User, IssuedCredentials]:
    """
    Create a user with a generated password inside the caller's transaction.

    Scope fields are kept only for the matching role.
    """
    if email_taken(email):
        raise ConflictError(f"Email {email} is already registered", {"field": "email"})

    password = generate_password()
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role.value,
        warehouse_id=warehouse_id if role == Role.WAREHOUSE else None,
        store_id=store_id if role == Role.STORE else None,
        is_active=True,
        first_login=True,
    )
    db.session.add(user)
    db.session.flush()
    return user, IssuedCredentials(email=user.email, password=password)


def create_user(
    caller: Caller,
    *,
    name: str,
    email: str,
    role,
    warehouse_id: int | None = None,
    store_id: int | None = None,
) -> tuple[User, IssuedCredentials]:
    """
    Create a back-office user and return one-shot credentials.

    Raises:
        ValidationError: bad input, or a scoped role without its scope
        NotFoundError: warehouse / store does not exist
        ConflictError: email already registered
    """
    require(caller, Action.USER_MANAGE)
    name = require_text(name, "name", max_length=255)
    email = validate_email(email)
    try:
        role = Role.parse(role)
    except ValueError as exc:
        raise ValidationError(str(exc))
    if role == Role.SUPERADMIN and caller.role != Role.SUPERADMIN:
        raise AuthorizationError("Only a superadmin can create another superadmin.")

    def _op():
        if role == Role.WAREHOUSE:
            if not warehouse_id:
                raise ValidationError("warehouse_id is required for warehouse users")
            if db.session.get(Warehouse, warehouse_id) is None:
                raise NotFoundError(f"Warehouse {warehouse_id} not found")
        if role == Role.STORE:
            if not store_id:
                raise ValidationError("store_id is required for store users")
            if db.session.get(Store, store_id) is None:
                raise NotFoundError(f"Store {store_id} not found")

        return issue_user(
            name=name,
            email=email,
            role=role,
            warehouse_id=warehouse_id,
            store_id=store_id,
        )

    user, creds = run_atomic(_op)
    current_app.logger.info("User %s created with role %s", user.email, user.role)
    return user, creds


def create_superadmin(*, name: str, email: str) -> tuple[User, IssuedCredentials]:
    """Bootstrap the first account (no caller exists yet)."""
    name = require_text(name, "name", max_length=255)
    email = validate_email(email)

    def _op():
        return issue_user(name=name, email=email, role=Role.SUPERADMIN)

    user, creds = run_atomic(_op)
    current_app.logger.info("Superadmin %s created", user.email)
    return user, creds


def reset_user_password(caller: Caller, user_id: int) -> IssuedCredentials:
    require(caller, Action.USER_MANAGE)

    def _op():
        user = get_user_or_404(user_id)
        if Role.parse(user.role) == Role.SUPERADMIN and caller.role != Role.SUPERADMIN:
            raise AuthorizationError("Only a superadmin can reset a superadmin password.")
        password = generate_password()
        user.password_hash = hash_password(password)
        user.first_login = True
        return IssuedCredentials(email=user.email, password=password)

    creds = run_atomic(_op)
    current_app.logger.info("Password reset for user %s", user_id)
    return creds


def set_user_active(caller: Caller, user_id: int, active: bool) -> User:
    require(caller, Action.USER_MANAGE)
    if not active and user_id == caller.user_id:
        raise PreconditionFailedError("You cannot deactivate your own account.")

    def _op():
        user = get_user_or_404(user_id)
        user.is_active = bool(active)
        return user

    user = run_atomic(_op)
    current_app.logger.info("User %s %s", user_id, "activated" if active else "deactivated")
    return user


def change_password(user_id: int, current_password: str, new_password: str) -> User:
    """Self-service password change; clears first_login."""
    if not new_password:
        raise ValidationError("new_password is required")

    def _op():
        user = get_user_or_404(user_id)
        if not user.is_active:
            raise AuthorizationError("User account is inactive.")
        if not verify_password(current_password or "", user.password_hash):
            raise AuthorizationError("Current password is incorrect.")
        if verify_password(new_password, user.password_hash):
            raise ValidationError("New password must differ from the current password")
        user.password_hash = hash_password(new_password)
        user.first_login = False
        return user

    return run_atomic(_op)


def authenticate(email: str, password: str) -> Optional[User]:
    """Active user matching email and password, else None."""
    user = (
        db.session.query(User)
        .filter(db.func.lower(User.email) == (email or "").strip().lower())
        .first()
    )
    if user is None or not user.is_active:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    return user


def list_users(
    caller: Caller,
    *,
    role=None,
    warehouse_id: Optional[int] = None,
    store_id: Optional[int] = None,
    active: Optional[bool] = None,
) -> list[User]:
    require(caller, Action.USER_MANAGE)
    q = db.session.query(User)
    if role is not None:
        q = q.filter(User.role == Role.parse(role).value)
    if warehouse_id is not None:
        q = q.filter(User.warehouse_id == warehouse_id)
    if store_id is not None:
        q = q.filter(User.store_id == store_id)
    if active is not None:
        q = q.filter(User.is_active.is_(bool(active)))
    return q.order_by(User.name.asc(), User.id.asc()).all()
