import asyncio
import html
import logging

from aiogram import Router, types
from aiogram.filters import Command

import bot_config as config
from keyboards import get_console_keyboard
from rcon_client import RCONClient
from rcon_errors import (
    AuthFailed,
    Cancelled,
    CommandTimeout,
    ConnectError,
    ConnectionLost,
    InvalidState,
    ProtocolError,
    RCONError,
)
from rcon_session import SessionState, StateChange

router = Router()
rcon = RCONClient(command_timeout_ms=config.RCON_COMMAND_TIMEOUT_MS, max_packet_size=config.RCON_MAX_PACKET_SIZE)

STATE_LABELS = {
    SessionState.DISCONNECTED: "⚪️ Disconnected",
    SessionState.CONNECTING: "🟡 Connecting...",
    SessionState.AUTHENTICATING: "🟡 Authenticating...",
    SessionState.READY: "🟢 Connected",
    SessionState.CLOSING: "🟠 Disconnecting...",
    SessionState.FAULTED: "🔴 Connection failed",
}

ERROR_LABELS = [
    (AuthFailed, "RCON authentication failed"),
    (ConnectError, "Cannot reach the server"),
    (CommandTimeout, "Command timed out"),
    (ConnectionLost, "Connection lost"),
    (ProtocolError, "RCON protocol error"),
    (Cancelled, "Cancelled"),
    (InvalidState, "RCON is not connected"),
]


# Middleware / Filter for security
def is_admin(message):
    # Handle both Message and CallbackQuery
    return message.from_user.id == config.ALLOWED_USER_ID


def describe_state(change: StateChange) -> str:
    text = STATE_LABELS[change.current]
    if change.error is not None:
        text += f": {change.error}"
    return text


def describe_error(error: RCONError) -> str:
    for error_type, label in ERROR_LABELS:
        if isinstance(error, error_type):
            return f"❌ {label}: {error}"
    return f"❌ RCON error: {error}"


def format_response(command: str, response: str) -> str:
    """Renders a console reply as an HTML <pre> block that fits one Telegram message."""
    if not response.strip():
        return f"✅ <code>{html.escape(command)}</code> (no output)"
    if len(response) > config.MAX_REPLY_CHARS:
        response = response[:config.MAX_REPLY_CHARS] + "\n... (truncated)"
    return f"<code>&gt; {html.escape(command)}</code>\n<pre>{html.escape(response)}</pre>"


def install_notifications(bot, loop: asyncio.AbstractEventLoop) -> None:
    """Forwards connection-state and error notifications to the admin chat.

    Listeners fire on the RCON reader thread, so messages are scheduled onto the bot's loop.
    """
    def forward(text: str) -> None:
        if not config.ALLOWED_USER_ID:
            return
        future = asyncio.run_coroutine_threadsafe(bot.send_message(config.ALLOWED_USER_ID, text), loop)
        future.add_done_callback(_log_send_failure)

    rcon.add_state_listener(lambda change: forward(describe_state(change)))
    rcon.add_error_listener(lambda error: forward(describe_error(error)))


def _log_send_failure(future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logging.warning(f"Failed to deliver RCON notification: {future.exception()}")


async def connect_rcon() -> str:
    try:
        await asyncio.to_thread(rcon.connect, config.RCON_HOST, config.RCON_PORT, config.RCON_PASSWORD, config.RCON_TIMEOUT_MS)
    except RCONError as e:
        logging.warning(f"RCON connect to {config.RCON_HOST}:{config.RCON_PORT} failed: {type(e).__name__}: {e}")
        return describe_error(e)
    return f"✅ Connected to {config.RCON_HOST}:{config.RCON_PORT}"


async def run_command(command: str) -> str:
    if not rcon.is_connected:
        reply = await connect_rcon()
        if not rcon.is_connected:
            return html.escape(reply)
    try:
        response = await asyncio.to_thread(rcon.send_command, command)
    except RCONError as e:
        logging.warning(f"RCON command {command!r} failed: {type(e).__name__}: {e}")
        return html.escape(describe_error(e))
    return format_response(command, response)


@router.message(Command("start"))
async def cmd_start(message: types.Message):
    if not is_admin(message):
        return await message.answer("⛔ Access Denied")

    await message.answer(
        "👋 **CS2 RCON Console**\n"
        f"Server: `{config.RCON_HOST}:{config.RCON_PORT}`\n"
        f"State: {STATE_LABELS[rcon.state]}\n\n"
        "/connect, /disconnect, /status, /rcon <command>",
        reply_markup=get_console_keyboard(rcon.is_connected),
        parse_mode="Markdown"
    )


@router.message(Command("connect"))
async def cmd_connect(message: types.Message):
    if not is_admin(message): return
    await message.answer(await connect_rcon(), reply_markup=get_console_keyboard(rcon.is_connected))


@router.message(Command("disconnect"))
async def cmd_disconnect(message: types.Message):
    if not is_admin(message): return
    await asyncio.to_thread(rcon.disconnect)
    await message.answer("🔌 RCON disconnected", reply_markup=get_console_keyboard(False))


@router.message(Command("rcon"))
async def cmd_rcon(message: types.Message):
    if not is_admin(message): return
    args = message.text.split(maxsplit=1)
    if len(args) < 2: return await message.answer("Usage: /rcon <command>")
    await message.answer(await run_command(args[1]), parse_mode="HTML")


@router.message(Command("status"))
async def cmd_status(message: types.Message):
    if not is_admin(message): return
    await message.answer(await run_command("status"), parse_mode="HTML")


@router.callback_query(lambda c: c.data and c.data.startswith("console:"))
async def process_console_callback(callback: types.CallbackQuery):
    if not is_admin(callback): return

    action = callback.data.split(":", 1)[1]
    if action == "connect":
        await callback.message.answer(await connect_rcon(), reply_markup=get_console_keyboard(rcon.is_connected))
    elif action == "disconnect":
        await asyncio.to_thread(rcon.disconnect)
        await callback.message.answer("🔌 RCON disconnected", reply_markup=get_console_keyboard(False))
    elif action == "status":
        await callback.message.answer(await run_command("status"), parse_mode="HTML")

    await callback.answer()
