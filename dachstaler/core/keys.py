"""
Key namespacing for the store.

Per-user keys follow `{domain}:{lowercased-username}[:{sub-key}]`; global
singletons (bank ledger, hourly jackpot claims) get a fixed key each.
"""

# Marker values stored as plain strings
KV_ACTIVE = "active"
KV_TRUE = "true"
KV_ACCEPTED = "accepted"

# Per-user domains
BALANCE = "user"
COOLDOWN = "cooldown"
LAST_ACTIVE = "lastActive"
BUFF = "buff"
BOOST = "boost"
INSURANCE = "insurance"
WIN_MULTIPLIER = "winmulti"
FREE_SPINS = "freespins"
GUARANTEED_PAIR = "guaranteedpair"
WILD_CARD = "wildcard"
PEEK = "peek"
RANK = "rank"
UNLOCK = "unlock"
STREAK = "streak"
STREAK_MULTIPLIER = "streakmultiplier"
DAILY = "daily"
PURCHASES = "purchases"
DISCLAIMER = "disclaimer"
SELFBAN = "selfban"
MONTHLY_LOGIN = "monthlylogin"
TRANSFER_LOCK = "transfer_lock"

# Global singletons
BANK_USERNAME = "dachsbank"
JACKPOT = "jackpot"


def user_key(domain: str, username: str, *sub_keys) -> str:
    """Build a per-user key, e.g. user_key(BUFF, "Alice", "lucky_charm") -> buff:alice:lucky_charm."""
    parts = [domain, username.lower(), *(str(s) for s in sub_keys)]
    return ":".join(parts)


def bank_key() -> str:
    return user_key(BALANCE, BANK_USERNAME)


def jackpot_key(day: int, month: int, hour: int) -> str:
    return f"{JACKPOT}:{day}-{month}-{hour}"
