# stores.py
# Request-scoped handles to the single per-process store and LINE client,
# kept here to avoid circular imports between app.py and the routers.

from fastapi import Request

from bot import ShiftBot
from line_api import LineMessenger
from store import ShiftStore


def get_store(request: Request) -> ShiftStore:
    return request.app.state.store


def get_messenger(request: Request) -> LineMessenger:
    return request.app.state.messenger


def get_bot(request: Request) -> ShiftBot:
    return request.app.state.bot
