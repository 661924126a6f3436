"""Data model for the Sage Accounting connector.

TokenData is parsed from the authorization server's JSON with pydantic so a
malformed token body fails early. Accounts and journals are plain dataclasses;
the helpers below convert between them and the Sage v3.1 wire shapes and are
deterministic so they can be unit-tested without calling Sage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field


class TokenData(BaseModel):
    """OAuth token set issued by the Sage authorization server."""

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    token_type: str | None = None
    scope: str | None = None
    expires_in: int | None = None
    refresh_token_expires_in: int | None = None
    requested_by_id: str | None = None


@dataclass(frozen=True, slots=True)
class Account:
    id: str
    name: str
    code: str
    type: str


@dataclass(frozen=True, slots=True)
class JournalLine:
    account_code: str
    # Positive = credit, negative = debit.
    amount: float
    description: str = ""


@dataclass(slots=True)
class JournalData:
    date: str
    narration: str
    journal_lines: list[JournalLine] = field(default_factory=list)


def project_account(item: Mapping[str, Any]) -> Account:
    """Project a Sage ledger account onto the fields callers need."""

    account_type = item.get("ledger_account_type")
    if not isinstance(account_type, Mapping):
        account_type = {}
    return Account(
        id=item["id"],
        name=item.get("name") or "",
        code=item.get("nominal_code") or "",
        type=account_type.get("id") or "",
    )


def project_accounts(items: Iterable[Mapping[str, Any]] | None) -> list[Account]:
    return [project_account(i) for i in items or []]


def split_amount(amount: float) -> tuple[float, float]:
    """Return (debit, credit) for a signed amount.

    Exactly one side is non-zero unless the amount itself is zero.
    """

    if amount > 0:
        return 0, amount
    if amount < 0:
        return abs(amount), 0
    return 0, 0


def journal_line_payload(line: JournalLine) -> dict[str, Any]:
    debit, credit = split_amount(line.amount)
    return {
        "details": line.description,
        "debit": debit,
        "credit": credit,
        "ledger_account_id": line.account_code,
    }


def journal_payload(data: JournalData) -> dict[str, Any]:
    """Build the POST /journals request body."""

    return {
        "journal": {
            "date": data.date,
            "reference": data.narration,
            "journal_lines": [journal_line_payload(line) for line in data.journal_lines],
        }
    }
