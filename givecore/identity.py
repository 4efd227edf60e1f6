"""
Identity Normalization

Wallet identities arrive in whatever case the wallet, the ledger binding or
the user typed. Every store key and every comparison goes through
``normalize_identity`` so that one account never shows up as two.
"""

from typing import Optional


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class IdentityError(ValueError):
    """Raised when an identity string is empty or malformed."""
    pass


def normalize_identity(identity: str) -> str:
    """Lower-case and strip an identity. Raises IdentityError if empty."""
    if identity is None:
        raise IdentityError("Identity is required")
    normalized = str(identity).strip().lower()
    if not normalized:
        raise IdentityError("Identity is required")
    return normalized


def same_identity(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive identity comparison; None never matches."""
    if not a or not b:
        return False
    return normalize_identity(a) == normalize_identity(b)


def is_zero_identity(identity: Optional[str]) -> bool:
    return not identity or normalize_identity(identity) == ZERO_ADDRESS
