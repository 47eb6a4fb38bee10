"""
Optimistic key mutation over a store with no transactions.

read -> compute -> write (or delete) -> re-read and compare -> back off and
retry on mismatch. After the retry budget is spent the caller gets a failed
outcome and treats the mutation as a no-op.

The same write-then-verify idea backs the one-shot marker spend and the
short-lived locks used by transfers.
"""

import asyncio
import random
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Optional

from dachstaler.config import RetryConfig
from dachstaler.core.exceptions import StoreError
from dachstaler.core.logger import get_logger, log_error
from dachstaler.core.storage import KeyValueStore

logger = get_logger("retry")


@dataclass
class KeyUpdate:
    """What a compute step wants done to the key."""

    value: Optional[str]  # None deletes the key
    ttl: Optional[int] = None
    result: Any = None
    write: bool = True

    @classmethod
    def unchanged(cls, result: Any = None) -> "KeyUpdate":
        return cls(value=None, result=result, write=False)


@dataclass
class UpdateOutcome:
    success: bool
    result: Any = None


def backoff_delay(attempt: int, base_ms: int) -> float:
    """Exponential backoff with up to 50% jitter, in seconds."""
    delay_ms = base_ms * (2 ** attempt)
    delay_ms += random.random() * delay_ms * 0.5
    return delay_ms / 1000


async def optimistic_update(
    store: KeyValueStore,
    key: str,
    compute: Callable[[Optional[str]], KeyUpdate],
    retry: RetryConfig,
    context: str,
) -> UpdateOutcome:
    """
    Apply `compute` to the current raw value of `key` until a re-read
    confirms the write landed.

    Args:
        store: Backend to mutate
        key: Key being updated
        compute: Pure function from the current raw value to a KeyUpdate
        retry: Attempt budget and backoff base
        context: Call-site label for logs

    Returns:
        UpdateOutcome with the compute step's result on success
    """
    for attempt in range(retry.max_retries):
        try:
            current = await store.get(key)
            update = compute(current)
            if not update.write:
                return UpdateOutcome(True, update.result)

            if update.value is None:
                await store.delete(key)
            else:
                await store.put(key, update.value, ttl=update.ttl)

            if await store.get(key) == update.value:
                return UpdateOutcome(True, update.result)
            logger.debug(f"[{context}] verify mismatch on {key} (attempt {attempt + 1})")
        except StoreError as e:
            log_error(logger, context, e, key=key, attempt=attempt + 1)

        if attempt < retry.max_retries - 1:
            await asyncio.sleep(backoff_delay(attempt, retry.backoff_base_ms))

    logger.warning(f"[{context}] gave up on {key} after {retry.max_retries} attempts")
    return UpdateOutcome(False)


async def consume_marker(store: KeyValueStore, key: str, marker: str, context: str) -> bool:
    """
    Spend a one-shot marker: delete it, then confirm it is gone.

    Returns False when the marker was absent (already spent) or the
    store failed; the binary marker is never retried.
    """
    try:
        if await store.get(key) != marker:
            return False
        await store.delete(key)
        return await store.get(key) is None
    except StoreError as e:
        log_error(logger, context, e, key=key)
        return False


async def acquire_lock(store: KeyValueStore, key: str, ttl: int, context: str) -> Optional[str]:
    """
    Take a short-lived lock: write a random token if the key is free, then
    re-read to confirm it is ours.

    Returns the token to pass to release_lock, or None when someone else
    holds the lock or the store failed.
    """
    token = secrets.token_hex(8)
    try:
        if await store.get(key) is not None:
            return None
        await store.put(key, token, ttl=ttl)
        if await store.get(key) == token:
            return token
    except StoreError as e:
        log_error(logger, context, e, key=key)
    return None


async def release_lock(store: KeyValueStore, key: str, token: str, context: str):
    """Delete the lock if it still carries our token; the TTL covers anything left behind."""
    try:
        if await store.get(key) == token:
            await store.delete(key)
    except StoreError as e:
        log_error(logger, context, e, key=key)
