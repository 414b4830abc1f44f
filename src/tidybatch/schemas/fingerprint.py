"""
Transaction fingerprints (duplicate detection keys).

A fingerprint is a truncated SHA256 digest of normalized transaction fields.
Three granularities are computed for every (name, amount, account) triple:

1. exact:          name|amount|account
2. name_amount:    name|amount
3. amount_account: amount|account

Each granularity is hashed under its own prefix so that fingerprints of
different kinds can share one index without colliding.

Fingerprints must be:
- Stable: same inputs always produce the same fingerprint
- Normalized: case, spacing and punctuation do not matter
- Collision-resistant for the expected history volume
"""

import hashlib
import re
from dataclasses import dataclass

# Length of the hex digest prefix to keep
FINGERPRINT_LENGTH = 16

# Prefixes for the three fingerprint kinds
EXACT_PREFIX = "exact"
NAME_AMOUNT_PREFIX = "name-amount"
AMOUNT_ACCOUNT_PREFIX = "amount-account"

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_for_fingerprint(value: str | None) -> str:
    """
    Normalize a field for hashing (lowercase, strip non-alphanumerics).

    Examples:
        >>> normalize_for_fingerprint("Tenaga Nasional Bhd.")
        'tenaganasionalbhd'
        >>> normalize_for_fingerprint("1,500.00")
        '150000'
    """
    if not value:
        return ""
    return _NON_ALNUM.sub("", value.lower())


def _digest(prefix: str, *parts: str) -> str:
    canonical = prefix + ":" + "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def compute_fingerprint(name: str | None, amount: str | None, account_number: str | None) -> str:
    """Exact-triple fingerprint for a transaction."""
    return _digest(
        EXACT_PREFIX,
        normalize_for_fingerprint(name),
        normalize_for_fingerprint(amount),
        normalize_for_fingerprint(account_number),
    )


@dataclass(frozen=True)
class FingerprintSet:
    """All fingerprints of one transaction.

    Partial fingerprints are None when one of their components is empty,
    since an under-constrained key would match unrelated transactions.
    """

    exact: str
    name_amount: str | None
    amount_account: str | None

    def partials(self) -> list[str]:
        """Partial fingerprints that can be checked, in lookup order."""
        return [fp for fp in (self.name_amount, self.amount_account) if fp]

    def all(self) -> list[str]:
        return [self.exact, *self.partials()]


def compute_fingerprints(
    name: str | None,
    amount: str | None,
    account_number: str | None,
) -> FingerprintSet:
    """Compute exact and partial fingerprints for a transaction triple."""
    normalized_name = normalize_for_fingerprint(name)
    normalized_amount = normalize_for_fingerprint(amount)
    normalized_account = normalize_for_fingerprint(account_number)

    name_amount = None
    if normalized_name and normalized_amount:
        name_amount = _digest(NAME_AMOUNT_PREFIX, normalized_name, normalized_amount)

    amount_account = None
    if normalized_amount and normalized_account:
        amount_account = _digest(AMOUNT_ACCOUNT_PREFIX, normalized_amount, normalized_account)

    return FingerprintSet(
        exact=_digest(EXACT_PREFIX, normalized_name, normalized_amount, normalized_account),
        name_amount=name_amount,
        amount_account=amount_account,
    )
