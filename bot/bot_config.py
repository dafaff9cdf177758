import os

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
ALLOWED_USER_ID = int(os.getenv("ALLOWED_USER_ID", "0"))

RCON_HOST = os.getenv("RCON_HOST", "127.0.0.1")
RCON_PORT = int(os.getenv("RCON_PORT", "27015"))
RCON_PASSWORD = os.getenv("RCON_PASSWORD", "")
RCON_TIMEOUT_MS = int(os.getenv("RCON_TIMEOUT_MS", "5000"))
RCON_COMMAND_TIMEOUT_MS = int(os.getenv("RCON_COMMAND_TIMEOUT_MS", "5000"))
RCON_MAX_PACKET_SIZE = int(os.getenv("RCON_MAX_PACKET_SIZE", str(64 * 1024)))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Telegram rejects messages over 4096 characters
MAX_REPLY_CHARS = 3500
