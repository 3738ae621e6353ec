"""Access layer: turn a bearer credential into an ``Identity``.

The ledger never issues or checks credentials itself. Callers authenticate
with an ``Authenticator`` and pass the resulting identity (or just its role)
into the operations that need it.

``StaticTokenAuthenticator`` is the development implementation: a fixed
table of tokens read from ``LIBRARY_LEDGER_ACCESS_TOKENS``, e.g.
``{"s3cret": "librarian:alice", "t0ken": "borrower:bob"}``.
"""

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, Field

from .config import get_config
from .errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    BORROWER = "borrower"
    LIBRARIAN = "librarian"


class Identity(BaseModel):
    """Who is calling, as resolved by the access layer."""

    user_id: str = Field(..., min_length=1, max_length=100)
    role: Role = Role.BORROWER

    @property
    def is_librarian(self) -> bool:
        return self.role == Role.LIBRARIAN


class Authenticator(Protocol):
    def authenticate(self, token: str | None) -> Identity:
        """Resolve a bearer token, raising UnauthorizedError if it is not valid."""
        ...


def parse_token_spec(spec: str) -> Identity:
    """Parse ``"role:user_id"`` into an Identity.

    Raises:
        ValueError: If the role is unknown or the user ID is missing
    """
    role, sep, user_id = spec.partition(":")
    if not sep or not user_id.strip():
        raise ValueError(f"Token spec must look like 'role:user_id', got {spec!r}")
    return Identity(user_id=user_id.strip(), role=Role(role.strip().lower()))


class StaticTokenAuthenticator:
    """Authenticator backed by a fixed token table."""

    def __init__(self, tokens: Mapping[str, Identity]):
        self._tokens = dict(tokens)

    @classmethod
    def from_config(cls, access_tokens: Mapping[str, str] | None = None) -> "StaticTokenAuthenticator":
        if access_tokens is None:
            access_tokens = get_config().access_tokens
        tokens = {token: parse_token_spec(spec) for token, spec in access_tokens.items()}
        if not tokens:
            logger.warning("No access tokens configured; every authenticated call will be rejected")
        return cls(tokens)

    def authenticate(self, token: str | None) -> Identity:
        if not token:
            raise UnauthorizedError("Authentication required")

        identity = self._tokens.get(token)
        if identity is None:
            logger.info("Rejected unknown access token")
            raise UnauthorizedError("Invalid or expired token")
        return identity


def require_role(identity: Identity, role: Role) -> Identity:
    """Return the identity if it holds ``role``; librarians hold every role."""
    if identity.role != role and identity.role != Role.LIBRARIAN:
        raise ForbiddenError(f"This operation requires the {role.value} role")
    return identity


_authenticator: Authenticator | None = None


def get_authenticator() -> Authenticator:
    """Get the process-wide authenticator, built from config on first use."""
    global _authenticator  # noqa: PLW0603
    if _authenticator is None:
        _authenticator = StaticTokenAuthenticator.from_config()
    return _authenticator


def set_authenticator(authenticator: Authenticator | None) -> None:
    global _authenticator  # noqa: PLW0603
    _authenticator = authenticator


def authenticate(token: str | None) -> Identity:
    return get_authenticator().authenticate(token)
