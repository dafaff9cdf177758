from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton


def get_console_keyboard(connected: bool = False):
    keyboard = []
    if connected:
        keyboard.append([InlineKeyboardButton(text="🔌 Disconnect", callback_data="console:disconnect")])
    else:
        keyboard.append([InlineKeyboardButton(text="🔗 Connect", callback_data="console:connect")])
    keyboard.append([InlineKeyboardButton(text="📊 Status", callback_data="console:status")])
    return InlineKeyboardMarkup(inline_keyboard=keyboard)
