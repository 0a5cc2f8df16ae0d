"""aiohttp front end exposing the dispatcher as ``POST <path>``."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import partial
from typing import Any

from aiohttp import web

from .dispatcher import RequestDispatcher, failure, http_status
from ..app import RewardApp

logger = logging.getLogger(__name__)

APP_KEY = web.AppKey("rewardforge_app", RewardApp)
DISPATCHER_KEY = web.AppKey("rewardforge_dispatcher", RequestDispatcher)


def json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


dumps = partial(json.dumps, default=json_default)


async def handle_api(request: web.Request) -> web.Response:
    dispatcher = request.app[DISPATCHER_KEY]
    try:
        body = await request.json()
    except ValueError:
        envelope = failure("Request body must be valid JSON", "bad_request")
    else:
        envelope = await dispatcher.dispatch(body)
    return web.json_response(envelope, status=http_status(envelope), dumps=dumps)


def build_web_app(app: RewardApp) -> web.Application:
    web_app = web.Application()
    web_app[APP_KEY] = app
    web_app[DISPATCHER_KEY] = RequestDispatcher(app)
    web_app.router.add_post(app.config.server.path, handle_api)

    async def on_startup(_: web.Application) -> None:
        await app.init_backend()
        logger.info("RewardForge API listening on %s.", app.config.server.path)

    async def on_cleanup(_: web.Application) -> None:
        await app.close()

    web_app.on_startup.append(on_startup)
    web_app.on_cleanup.append(on_cleanup)
    return web_app
