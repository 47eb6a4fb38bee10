from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from typing import List
from slowapi import Limiter
from slowapi.util import get_remote_address

from dachstaler.config import settings
from dachstaler.core import accounts, bank, items
from dachstaler.core.commands import handle_command
from dachstaler.core.context import SlotsContext
from dachstaler.core.logger import get_logger
from dachstaler.core.results import STATUS_ERROR

limiter = Limiter(key_func=get_remote_address)

logger = get_logger("api")

router = APIRouter()

# ==================== Request Models ====================

class CommandRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    action: str = Field(min_length=1, max_length=32)
    args: List[str] = Field(default_factory=list, max_length=8)

# ==================== Helpers ====================

def get_context(request: Request) -> SlotsContext:
    return request.app.state.ctx

def get_command_rate_limit():
    """Get rate limit string for chat commands from config."""
    return settings.rate_limit.command_requests if settings.rate_limit.enabled else "1000/minute"

def get_api_rate_limit():
    return settings.rate_limit.api_requests if settings.rate_limit.enabled else "1000/minute"

# ==================== Command Endpoint ====================

@router.post("/command", response_class=PlainTextResponse)
@limiter.limit(get_command_rate_limit)
async def run_command(request: Request, data: CommandRequest):
    """
    Run one chat command (`!slots ...`, `!shop ...`) and return the chat reply.
    Rejections are normal replies (200); only unexpected failures return 500.
    """
    ctx = get_context(request)
    result = await handle_command(ctx, data.username, data.action, data.args)
    status_code = 500 if result.status == STATUS_ERROR else 200
    return PlainTextResponse(result.message, status_code=status_code)

# ==================== Read-only Endpoints ====================

@router.get("/balance/{username}")
@limiter.limit(get_api_rate_limit)
async def get_balance(request: Request, username: str):
    ctx = get_context(request)
    balance, free_spins = await accounts.get_balance(ctx, username), await items.get_free_spins(ctx, username)
    return {
        "username": username.lower(),
        "balance": balance,
        "free_spins": [b.model_dump() for b in free_spins],
    }

@router.get("/bank")
@limiter.limit(get_api_rate_limit)
async def get_bank(request: Request):
    ctx = get_context(request)
    return {"balance": await bank.get_bank_balance(ctx)}

@router.get("/health")
async def health(request: Request):
    ctx = get_context(request)
    store_ok = True
    ping = getattr(ctx.store, "ping", None)
    if ping is not None:
        store_ok = await ping()
    return {"status": "ok" if store_ok else "degraded", "store": type(ctx.store).__name__}
