"""
auth.py
Authentication utilities (bcrypt hashing, verify, staff/member login, change password)
and role-based permission checks.

This avoids passlib's bcrypt backend auto-detection issues on some Python 3.13 Windows setups.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

import bcrypt

import db
from models import Member, Permission, Role, User
from utils import new_id


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Returns a bcrypt hash as a UTF-8 string (stored in SQLite).
    """
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(secret, salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """
    Verify password against stored bcrypt hash. Accounts without a hash never match.
    """
    if not password_hash:
        return False
    secret = _to_bcrypt_secret(password)
    stored = password_hash.encode("utf-8")
    return bcrypt.checkpw(secret, stored)


def login(email: str, password: str) -> User | None:
    user = db.get_user_by_email(email)
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def member_login(email: str, password: str) -> Member | None:
    """Member portal login; members without a portal password cannot sign in."""
    member = db.get_member_by_email(email)
    if not member or not verify_password(password, member.password_hash):
        return None
    return member


def change_password(user_id: str, new_password: str) -> None:
    user = db.get_user(user_id)
    if user is None:
        raise KeyError(user_id)
    db.save_user(replace(user, password_hash=hash_password(new_password)))
    db.clear_force_password_change()


def validate_new_password(new1: str, new2: str) -> list[str]:
    errors = []
    if len(new1) < 6:
        errors.append("Password must be at least 6 characters.")
    if new1 != new2:
        errors.append("Passwords do not match.")
    return errors


# ---------- Roles / permissions ----------

def has_permission(user: User | None, permission: Permission, roles: Iterable[Role]) -> bool:
    if user is None:
        return False
    role = next((r for r in roles if r.id == user.role_id), None)
    return role is not None and permission in role.permissions


def check_role_editable(role: Role) -> None:
    if not role.is_editable:
        raise PermissionError(f"Role '{role.name}' cannot be modified")


def update_role(role: Role) -> None:
    current = db.get_role(role.id)
    if current is not None:
        check_role_editable(current)
    db.save_role(role)


def delete_role(role_id: str) -> None:
    current = db.get_role(role_id)
    if current is None:
        return
    check_role_editable(current)
    db.delete_role(role_id)


def create_role(name: str, description: str, permissions: Iterable[Permission]) -> Role:
    """New roles are always editable."""
    if not name.strip():
        raise ValueError("Role name is required.")
    role = Role(new_id("role_"), name.strip(), description.strip(), frozenset(permissions), is_editable=True)
    db.save_role(role)
    return role


def update_user(user_id: str, name: str, email: str, role_id: str) -> User:
    """Change a staff user's name, email or role; the password is kept."""
    user = db.get_user(user_id)
    if user is None:
        raise KeyError(user_id)
    if db.get_role(role_id) is None:
        raise ValueError(f"Unknown role {role_id}")
    other = db.get_user_by_email(email)
    if other is not None and other.id != user_id:
        raise ValueError("Email already in use.")
    updated = replace(user, name=name.strip(), email=email.strip(), role_id=role_id)
    db.save_user(updated)
    return updated
