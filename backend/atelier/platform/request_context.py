from contextvars import ContextVar
from typing import Optional

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_account_id_ctx: ContextVar[Optional[str]] = ContextVar("account_id", default=None)


def set_request_id(request_id: str):
    return _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def bind_account_id(account_id: Optional[str]):
    """Attach the account a unit of work acts on, so log lines can be joined per account."""
    return _account_id_ctx.set(account_id)


def get_account_id() -> Optional[str]:
    return _account_id_ctx.get()
