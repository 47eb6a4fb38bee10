"""
Hourly jackpot.

Each hour has one lucky second derived from the local date and hour. The
first spin landing exactly on it claims the hour's marker and wins the bonus.
"""

from datetime import datetime

from dachstaler.core import keys
from dachstaler.core.context import SlotsContext
from dachstaler.core.exceptions import StoreError
from dachstaler.core.logger import get_logger, log_error
from dachstaler.core.tables import JACKPOT_CLAIM_TTL_SECONDS
from dachstaler.core.timeutil import local_datetime

logger = get_logger("jackpot")


def lucky_second(moment: datetime) -> int:
    seed = moment.day * 100 + moment.month * 10 + moment.hour
    return seed % 60


async def check_and_claim_hourly_jackpot(ctx: SlotsContext) -> bool:
    moment = local_datetime(ctx.now(), ctx.economy.timezone)
    if moment.second != lucky_second(moment):
        return False

    key = keys.jackpot_key(moment.day, moment.month, moment.hour)
    try:
        if await ctx.store.get(key) is not None:
            return False
        await ctx.store.put(key, keys.KV_TRUE, ttl=JACKPOT_CLAIM_TTL_SECONDS)
    except StoreError as e:
        log_error(logger, "check_and_claim_hourly_jackpot", e, key=key)
        return False

    logger.info(f"Hourly jackpot claimed for {moment:%d.%m. %H}h")
    return True
