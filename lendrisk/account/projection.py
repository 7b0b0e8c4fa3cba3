"""Project pending lending instructions onto an account's balances.

Only instructions issued directly against the lending protocol are
simulated; side effects of other programs are not.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Mapping, Sequence, Union

from ..bank.shares import get_asset_shares, get_liability_shares
from ..exceptions import (
    BankNotFoundError,
    InvalidInstructionSequenceError,
    NoInactiveBalanceError,
)
from ..models import ONE, ZERO, Balance, Bank, DEFAULT_BANK_ADDRESS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Instructions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Deposit:
    bank: str
    amount: Decimal


@dataclass(frozen=True)
class Borrow:
    bank: str
    amount: Decimal


@dataclass(frozen=True)
class Repay:
    bank: str
    amount: Decimal = ZERO
    repay_all: bool = False


@dataclass(frozen=True)
class Withdraw:
    bank: str
    amount: Decimal = ZERO
    withdraw_all: bool = False


PendingInstruction = Union[Deposit, Borrow, Repay, Withdraw]


@dataclass(frozen=True)
class ProjectionResult:
    balances: tuple[Balance, ...]
    impacted_asset_banks: tuple[str, ...]
    impacted_liability_banks: tuple[str, ...]


# ---------------------------------------------------------------------------
# Slot helpers
# ---------------------------------------------------------------------------


def _find_active(balances: list[Balance], bank_address: str) -> int | None:
    for index, balance in enumerate(balances):
        if balance.active and balance.bank_address == bank_address:
            return index
    return None


def _open_slot(balances: list[Balance], bank_address: str) -> int:
    """Index of the bank's active slot, claiming the first inactive slot if needed."""
    index = _find_active(balances, bank_address)
    if index is not None:
        return index

    for index, balance in enumerate(balances):
        if not balance.active:
            balances[index] = replace(
                balance,
                active=True,
                bank_address=bank_address,
                asset_shares=ZERO,
                liability_shares=ZERO,
            )
            return index
    raise NoInactiveBalanceError("No inactive balance found")


def _existing_slot(
    balances: list[Balance], bank_address: str, position: int, kind: str
) -> int:
    index = _find_active(balances, bank_address)
    if index is None:
        raise InvalidInstructionSequenceError(
            f"Balance for bank {bank_address} should be projected active at this point "
            f"(instruction {position}: {kind})"
        )
    return index


def _close_if_empty(balance: Balance) -> Balance:
    if balance.asset_shares == 0 and balance.liability_shares == 0:
        return replace(balance, active=False, bank_address=DEFAULT_BANK_ADDRESS)
    return balance


def _bank(banks: Mapping[str, Bank], bank_address: str) -> Bank:
    bank = banks.get(bank_address)
    if bank is None:
        raise BankNotFoundError(bank_address)
    return bank


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def project_balances(
    balances: Sequence[Balance],
    instructions: Iterable[PendingInstruction],
    banks: Mapping[str, Bank],
    multipliers: Mapping[str, Decimal] | None = None,
) -> ProjectionResult:
    """Apply *instructions* in order to a copy of *balances*.

    Deposit amounts are in the underlying token and are divided by the bank's
    integration multiplier; withdrawals are already in the wrapped token.

    Raises:
        NoInactiveBalanceError: a new position needs a slot and none is free.
        InvalidInstructionSequenceError: repay or withdraw without an active balance.
        BankNotFoundError: an instruction names an unknown bank.
    """
    projected = list(balances)
    impacted_assets: dict[str, None] = {}
    impacted_liabilities: dict[str, None] = {}

    for position, ix in enumerate(instructions):
        if isinstance(ix, Deposit):
            impacted_assets[ix.bank] = None
            index = _open_slot(projected, ix.bank)
            bank = _bank(banks, ix.bank)
            multiplier = (multipliers or {}).get(ix.bank, ONE)
            shares = get_asset_shares(bank, ix.amount / multiplier)
            current = projected[index]
            projected[index] = replace(current, asset_shares=current.asset_shares + shares)

        elif isinstance(ix, Borrow):
            impacted_liabilities[ix.bank] = None
            index = _open_slot(projected, ix.bank)
            bank = _bank(banks, ix.bank)
            shares = get_liability_shares(bank, ix.amount)
            current = projected[index]
            projected[index] = replace(
                current, liability_shares=current.liability_shares + shares
            )

        elif isinstance(ix, Repay):
            impacted_liabilities[ix.bank] = None
            index = _existing_slot(projected, ix.bank, position, "repay")
            current = projected[index]
            if ix.repay_all:
                remaining = ZERO
            else:
                shares = get_liability_shares(_bank(banks, ix.bank), ix.amount)
                remaining = max(ZERO, current.liability_shares - shares)
            projected[index] = _close_if_empty(replace(current, liability_shares=remaining))

        elif isinstance(ix, Withdraw):
            impacted_assets[ix.bank] = None
            index = _existing_slot(projected, ix.bank, position, "withdraw")
            current = projected[index]
            if ix.withdraw_all:
                remaining = ZERO
            else:
                shares = get_asset_shares(_bank(banks, ix.bank), ix.amount)
                remaining = max(ZERO, current.asset_shares - shares)
            projected[index] = _close_if_empty(replace(current, asset_shares=remaining))

        else:
            raise TypeError(f"Unsupported instruction: {ix!r}")

    return ProjectionResult(
        balances=tuple(projected),
        impacted_asset_banks=tuple(impacted_assets),
        impacted_liability_banks=tuple(impacted_liabilities),
    )


def project_active_banks(
    balances: Sequence[Balance], instructions: Iterable[PendingInstruction]
) -> list[str]:
    """Banks that stay active once *instructions* run, in slot order.

    Only slot occupancy is tracked; amounts are ignored, so a partial repay or
    withdraw keeps the bank active.
    """
    slots = [(b.active, b.bank_address) for b in balances]

    for position, ix in enumerate(instructions):
        target = next(
            (i for i, (active, bank) in enumerate(slots) if active and bank == ix.bank), None
        )
        if isinstance(ix, (Deposit, Borrow)):
            if target is None:
                free = next((i for i, (active, _) in enumerate(slots) if not active), None)
                if free is None:
                    raise NoInactiveBalanceError("No inactive balance found")
                slots[free] = (True, ix.bank)
        else:
            if target is None:
                kind = "repay" if isinstance(ix, Repay) else "withdraw"
                raise InvalidInstructionSequenceError(
                    f"Balance for bank {ix.bank} should be projected active at this point "
                    f"(instruction {position}: {kind})"
                )
            closes = ix.repay_all if isinstance(ix, Repay) else ix.withdraw_all
            if closes:
                slots[target] = (False, DEFAULT_BANK_ADDRESS)

    return [bank for active, bank in slots if active]


def compute_health_check_banks(
    balances: Sequence[Balance],
    banks: Mapping[str, Bank],
    mandatory_banks: Iterable[str] = (),
    excluded_banks: Iterable[str] = (),
) -> list[Bank]:
    """Banks a health check must cover, in slot order.

    Active, non-excluded balances keep their bank. Mandatory banks without an
    active balance take the first free slots.
    """
    excluded = set(excluded_banks)
    active_banks = {b.bank_address for b in balances if b.active}
    to_add = [b for b in dict.fromkeys(mandatory_banks) if b not in active_banks]

    result: list[Bank] = []
    for balance in balances:
        if balance.active:
            if balance.bank_address in excluded:
                continue
            result.append(_bank(banks, balance.bank_address))
        elif to_add:
            result.append(_bank(banks, to_add.pop(0)))
    return result
