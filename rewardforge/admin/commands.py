"""Admin command wiring for aiogram."""

from __future__ import annotations

from typing import Sequence

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from .policy import SingleAdminPolicy
from .service import AdminService
from ..config import AdminCommandConfig
from ..domain.exceptions import RewardForgeError
from ..storage.base import WithdrawalRecord
from ..telegram.filters import AdminFilter


def build_admin_router(
    service: AdminService,
    policy: SingleAdminPolicy,
    commands: AdminCommandConfig | None = None,
) -> Router:
    commands = commands or AdminCommandConfig()
    router = Router()
    router.message.filter(AdminFilter(policy))

    @router.message(Command(commands.pending))
    async def handle_pending(message: Message) -> None:
        try:
            pending = await service.list_pending(message.from_user.id)
        except RewardForgeError as exc:
            await message.answer(f"Error: {exc}")
            return
        await message.answer(render_pending(pending))

    async def resolve(message: Message, action: str, command: str) -> None:
        parts = (message.text or "").split()
        if len(parts) < 2:
            await message.answer(f"Usage: /{command} <request_id>")
            return
        try:
            record = await service.resolve_withdrawal(message.from_user.id, parts[1], action)
        except RewardForgeError as exc:
            await message.answer(f"Error: {exc}")
            return
        await message.answer(
            f"Request {record.request_id} ({record.amount} for user {record.user_id}) "
            f"is now {record.status.value}."
        )

    @router.message(Command(commands.approve))
    async def handle_approve(message: Message) -> None:
        await resolve(message, "approve", commands.approve)

    @router.message(Command(commands.reject))
    async def handle_reject(message: Message) -> None:
        await resolve(message, "reject", commands.reject)

    async def set_ban(message: Message, banned: bool, command: str) -> None:
        parts = (message.text or "").split()
        if len(parts) < 2 or not parts[1].lstrip("-").isdigit():
            await message.answer(f"Usage: /{command} <user_id>")
            return
        target = int(parts[1])
        try:
            await service.set_ban(message.from_user.id, target, banned)
        except RewardForgeError as exc:
            await message.answer(f"Error: {exc}")
            return
        await message.answer(f"User {target} {'banned' if banned else 'unbanned'}.")

    @router.message(Command(commands.ban))
    async def handle_ban(message: Message) -> None:
        await set_ban(message, True, commands.ban)

    @router.message(Command(commands.unban))
    async def handle_unban(message: Message) -> None:
        await set_ban(message, False, commands.unban)

    return router


def render_pending(pending: Sequence[WithdrawalRecord]) -> str:
    if not pending:
        return "No pending withdrawals."
    lines = [f"Pending withdrawals ({len(pending)}):"]
    for record in pending:
        created = record.created_at.strftime("%Y-%m-%d %H:%M") if record.created_at else "?"
        lines.append(
            f"• {record.request_id}: {record.amount} to {record.destination} "
            f"(user {record.user_id}, {created})"
        )
    return "\n".join(lines)
