"""User accounts, password hashing and session tokens."""

import logging
import re
import secrets

from passlib.context import CryptContext

from .errors import (
    AuthenticationError,
    PermissionDeniedError,
    UserNotFoundError,
    ValidationError,
)
from .models import ROLE_ADMIN, ROLE_CASHIER, ROLES, User
from .storage import Store

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50
TOKEN_BYTES = 32

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def validate_password(password: str) -> None:
    """
    Check password strength.

    Raises:
        ValidationError: If the password is too short or lacks a lowercase
            letter, an uppercase letter or a digit.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            field="password",
        )
    if not (
        re.search(r"[a-z]", password)
        and re.search(r"[A-Z]", password)
        and re.search(r"\d", password)
    ):
        raise ValidationError(
            "Password must contain at least one lowercase letter, "
            "one uppercase letter, and one number",
            field="password",
        )


def _clean_name(name: str) -> str:
    name = name.strip()
    if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
        raise ValidationError(
            f"Name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters",
            field="name",
        )
    return name


def _clean_email(email: str) -> str:
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email", field="email")
    return email


def _check_role(role: str) -> None:
    if role not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}", field="role")


def register_user(
    store: Store, name: str, email: str, password: str, role: str = ROLE_CASHIER
) -> User:
    """
    Create a user account.

    Raises:
        ValidationError: If a field is invalid.
        UserExistsError: If the email is already registered.
    """
    name = _clean_name(name)
    email = _clean_email(email)
    _check_role(role)
    validate_password(password)

    user = User.create(name, email, hash_password(password), role)
    store.insert_user(user)
    logger.info("User %s registered as %s", user.email, user.role)
    return user


def authenticate(store: Store, email: str, password: str) -> tuple[User, str]:
    """
    Check credentials and start a session.

    Issues a fresh token, replacing any previous one.

    Returns:
        Tuple of (user, bearer token).

    Raises:
        AuthenticationError: If the credentials are wrong or the account is
            deactivated.
    """
    user = store.get_user_by_email(email.strip().lower())
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Rejected login for %s", email)
        raise AuthenticationError("Invalid email or password")
    if not user.active:
        logger.warning("Rejected login for deactivated account %s", email)
        raise AuthenticationError("Account is deactivated. Please contact administrator.")

    user.token = secrets.token_urlsafe(TOKEN_BYTES)
    store.update_user(user, ("token",))
    logger.info("User %s logged in", user.email)
    return user, user.token


def logout(store: Store, user: User) -> None:
    user.token = None
    store.update_user(user, ("token",))


def user_for_token(store: Store, token: str | None) -> User:
    """
    Resolve a bearer token to its user.

    Raises:
        AuthenticationError: If the token is missing, unknown or belongs to a
            deactivated account.
    """
    if not token:
        raise AuthenticationError("Access denied. No token provided.")
    user = store.get_user_by_token(token)
    if user is None:
        raise AuthenticationError("Invalid token")
    if not user.active:
        raise AuthenticationError("Account is deactivated")
    return user


def require_role(user: User, *roles: str) -> User:
    """
    Raises:
        PermissionDeniedError: If the user's role is not one of ``roles``.
    """
    if user.role not in roles:
        raise PermissionDeniedError(roles)
    return user


def ensure_default_admin(store: Store, email: str, password: str, name: str) -> User | None:
    """
    Create the default admin account if no user has that email yet.

    Returns:
        The new admin, or None if the account already existed.
    """
    if store.get_user_by_email(email.strip().lower()) is not None:
        return None
    return register_user(store, name, email, password, role=ROLE_ADMIN)


def change_password(store: Store, user: User, current_password: str, new_password: str) -> User:
    """
    Replace a user's password after checking the current one.

    Raises:
        AuthenticationError: If ``current_password`` is wrong.
        ValidationError: If the new password is too weak.
    """
    if not verify_password(current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    validate_password(new_password)
    user.password_hash = hash_password(new_password)
    user = store.update_user(user, ("password_hash",))
    logger.info("User %s changed their password", user.email)
    return user


# --- User management ---


def get_user(store: Store, user_id: str) -> User:
    """
    Get a user by ID.

    Raises:
        UserNotFoundError: If the user doesn't exist.
    """
    user = store.get_user(user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def list_users(
    store: Store,
    search: str | None = None,
    role: str | None = None,
    active: bool | None = None,
) -> list[User]:
    """List users, newest first, filtered by name/email substring, role and status."""
    users = store.list_users()
    needle = (search or "").strip().lower()
    if needle:
        users = [u for u in users if needle in u.name.lower() or needle in u.email]
    if role:
        users = [u for u in users if u.role == role]
    if active is not None:
        users = [u for u in users if u.active == active]
    users.sort(key=lambda u: u.created_at, reverse=True)
    return users


def require_admin_or_self(actor: User, user_id: str) -> None:
    """
    Raises:
        PermissionDeniedError: If ``actor`` is neither an admin nor ``user_id``.
    """
    if not actor.is_admin and actor.id != user_id:
        raise PermissionDeniedError((ROLE_ADMIN,))


def _active_admin_count(store: Store) -> int:
    return sum(1 for u in store.list_users() if u.is_admin and u.active)


def update_user(
    store: Store,
    actor: User,
    user_id: str,
    name: str | None = None,
    email: str | None = None,
    role: str | None = None,
    active: bool | None = None,
) -> User:
    """
    Update a user's profile.

    Anyone may rename their own account; email, role and status changes
    are admin only. An admin can't deactivate themselves, and the last
    active admin can't be demoted.

    Raises:
        PermissionDeniedError: If ``actor`` may not make the change.
        UserNotFoundError: If the user doesn't exist.
        ValidationError: If a field is invalid or the change would lock
            admins out.
        UserExistsError: If the new email is taken.
    """
    require_admin_or_self(actor, user_id)
    if not actor.is_admin and (email is not None or role is not None or active is not None):
        raise PermissionDeniedError((ROLE_ADMIN,))

    user = get_user(store, user_id)
    fields = []
    if name is not None:
        user.name = _clean_name(name)
        fields.append("name")
    if email is not None:
        user.email = _clean_email(email)
        fields.append("email")
    if role is not None:
        _check_role(role)
        if user.id == actor.id and role != ROLE_ADMIN and _active_admin_count(store) <= 1:
            raise ValidationError("Cannot change role: you are the only active admin", field="role")
        user.role = role
        fields.append("role")
    if active is not None:
        if user.id == actor.id and not active:
            raise ValidationError("You cannot deactivate your own account", field="active")
        user.active = active
        fields.append("active")

    if not fields:
        return user
    user = store.update_user(user, fields)
    logger.info("User %s updated by %s (%s)", user.email, actor.email, ", ".join(fields))
    return user


def toggle_user_status(store: Store, actor: User, user_id: str) -> User:
    """
    Activate a deactivated account, or deactivate an active one.

    Raises:
        UserNotFoundError: If the user doesn't exist.
        ValidationError: If the target is ``actor`` or the last active admin.
    """
    if user_id == actor.id:
        raise ValidationError("You cannot change your own account status")
    user = get_user(store, user_id)
    if user.is_admin and user.active and _active_admin_count(store) <= 1:
        raise ValidationError("Cannot deactivate the last active admin user")

    user.active = not user.active
    user = store.update_user(user, ("active",))
    logger.info(
        "User %s %s by %s", user.email, "activated" if user.active else "deactivated", actor.email
    )
    return user


def delete_user(store: Store, actor: User, user_id: str) -> User:
    """
    Permanently remove an account. Orders keep the cashier's name.

    Raises:
        UserNotFoundError: If the user doesn't exist.
        ValidationError: If the target is ``actor`` or the last active admin.
    """
    if user_id == actor.id:
        raise ValidationError("You cannot delete your own account")
    user = get_user(store, user_id)
    if user.is_admin and user.active and _active_admin_count(store) <= 1:
        raise ValidationError("Cannot delete the last active admin user")

    user = store.delete_user(user_id)
    logger.info("User %s deleted by %s", user.email, actor.email)
    return user
