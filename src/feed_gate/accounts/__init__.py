"""Account lifecycle: registration, login, address top-ups and overviews."""

from feed_gate.accounts.manager import (
    AccountError,
    AccountExistsError,
    AccountManager,
    AccountNotFoundError,
    AccountOverview,
    InvalidCredentialsError,
)

__all__ = [
    "AccountError",
    "AccountExistsError",
    "AccountManager",
    "AccountNotFoundError",
    "AccountOverview",
    "InvalidCredentialsError",
]
