from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.backend.integrations.sage_models import (
    Account,
    JournalData,
    JournalLine,
    TokenData,
    journal_line_payload,
    journal_payload,
    project_account,
    project_accounts,
    split_amount,
)


def _ledger_item(i: int) -> dict:
    return {
        "id": f"acc-{i}",
        "displayed_as": f"Account {i} ({4000 + i})",
        "name": f"Account {i}",
        "nominal_code": str(4000 + i),
        "ledger_account_type": {"id": "SALES", "displayed_as": "Sales"},
        "visible_in_journals": True,
    }


def test_project_account_keeps_only_needed_fields() -> None:
    assert project_account(_ledger_item(1)) == Account(
        id="acc-1", name="Account 1", code="4001", type="SALES"
    )


def test_project_account_ignores_non_mapping_account_type() -> None:
    item = {**_ledger_item(1), "ledger_account_type": "SALES"}
    assert project_account(item).type == ""


def test_project_accounts_handles_missing_items() -> None:
    assert project_accounts(None) == []
    assert project_accounts([]) == []
    assert len(project_accounts([_ledger_item(1), _ledger_item(2)])) == 2


@pytest.mark.parametrize(
    ("amount", "expected"),
    [(-50, (50, 0)), (75, (0, 75)), (0, (0, 0)), (-0.5, (0.5, 0))],
)
def test_split_amount_sign_picks_debit_or_credit(amount, expected) -> None:
    assert split_amount(amount) == expected


def test_journal_line_payload_maps_negative_amount_to_debit() -> None:
    line = JournalLine(account_code="acc-1", amount=-50, description="Rent")
    assert journal_line_payload(line) == {
        "details": "Rent",
        "debit": 50,
        "credit": 0,
        "ledger_account_id": "acc-1",
    }


def test_journal_payload_preserves_line_order() -> None:
    data = JournalData(
        date="2024-03-31",
        narration="Month end accrual",
        journal_lines=[
            JournalLine(account_code="acc-1", amount=75, description="Income"),
            JournalLine(account_code="acc-2", amount=-75, description="Bank"),
        ],
    )

    payload = journal_payload(data)
    journal = payload["journal"]
    assert journal["date"] == "2024-03-31"
    assert journal["reference"] == "Month end accrual"
    assert [line["ledger_account_id"] for line in journal["journal_lines"]] == ["acc-1", "acc-2"]
    assert journal["journal_lines"][0]["credit"] == 75
    assert journal["journal_lines"][1]["debit"] == 75


def test_token_data_requires_access_and_refresh_token() -> None:
    with pytest.raises(ValidationError):
        TokenData.model_validate({"access_token": "a"})
    with pytest.raises(ValidationError):
        TokenData.model_validate({"access_token": "", "refresh_token": "r"})


def test_token_data_keeps_unknown_fields() -> None:
    token = TokenData.model_validate(
        {"access_token": "a", "refresh_token": "r", "expires_in": 300, "region": "uk"}
    )
    assert token.expires_in == 300
    assert token.model_dump()["region"] == "uk"
