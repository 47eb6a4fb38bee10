"""
House ledger ("dachsbank").

Every debit from a player is mirrored by a credit here and every payout by a
debit. The ledger has no cap and may go negative.
"""

from dachstaler.core import keys
from dachstaler.core.context import SlotsContext
from dachstaler.core.exceptions import StoreError
from dachstaler.core.logger import get_logger, log_error
from dachstaler.core.retry import KeyUpdate, optimistic_update

logger = get_logger("bank")


def _parse_ledger(raw, start: int) -> int:
    if raw is None:
        return start
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Corrupt bank ledger value {raw!r}, restarting from {start}")
        return start


async def get_bank_balance(ctx: SlotsContext) -> int:
    start = ctx.economy.bank_start_balance
    try:
        raw = await ctx.store.get(keys.bank_key())
    except StoreError as e:
        log_error(logger, "get_bank_balance", e)
        return start
    return _parse_ledger(raw, start)


async def update_bank_balance(ctx: SlotsContext, delta: int) -> bool:
    """Move the house ledger by `delta` (positive = house earns). Returns False if the update gave up."""
    if delta == 0:
        return True
    start = ctx.economy.bank_start_balance

    def compute(raw):
        new_value = _parse_ledger(raw, start) + delta
        return KeyUpdate(str(new_value), result=new_value)

    outcome = await optimistic_update(
        ctx.store, keys.bank_key(), compute, ctx.settings.retry, "update_bank_balance"
    )
    if not outcome.success:
        logger.error(f"Bank ledger update of {delta:+d} was lost")
    return outcome.success
