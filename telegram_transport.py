import asyncio
import logging
from uuid import uuid4

from telegram import (
    Bot,
    BotCommand,
    InlineQueryResultArticle,
    InlineQueryResultGif,
    InlineQueryResultPhoto,
    InputTextMessageContent,
    Update,
)
from telegram.ext import ContextTypes, filters

from local_assets import LocalAssetResolver
from media import MediaPayload

INLINE_MAX_RESULTS = 10
INLINE_CACHE_TIME = 300

# edits of already handled messages are not treated as new requests
TEXT_MESSAGE_FILTER = filters.TEXT & ~filters.UpdateType.EDITED

BOT_COMMANDS = [
    BotCommand("start", "How to use this bot"),
    BotCommand("enable_mygo", "Prefer the MyGo image pool"),
    BotCommand("disable_mygo", "Always use Google image search"),
    BotCommand("status", "Show whether MyGo mode is on"),
]


class TelegramTransport:
    """ChatTransport on top of a python-telegram-bot ``Bot``."""

    def __init__(self, bot: Bot, send_timeout: float = 30.0) -> None:
        self.bot = bot
        self.send_timeout = send_timeout

    def _timeouts(self) -> dict:
        return {"read_timeout": self.send_timeout, "write_timeout": self.send_timeout}

    async def send_text(self, chat_id: int, text: str) -> None:
        await self.bot.send_message(chat_id=chat_id, text=text, **self._timeouts())

    async def send_photo(self, chat_id: int, media: MediaPayload) -> None:
        await self.bot.send_photo(chat_id=chat_id, photo=media, **self._timeouts())

    async def send_animation(self, chat_id: int, media: MediaPayload) -> None:
        await self.bot.send_animation(chat_id=chat_id, animation=media, **self._timeouts())


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    msg = update.effective_message
    if not msg or not msg.text:
        return
    dispatcher = context.bot_data["dispatcher"]
    await dispatcher.handle_message(msg.chat_id, msg.text)


def build_inline_results(assets: LocalAssetResolver, query: str, base_url: str) -> list:
    results = []
    for match in assets.find_matching_assets(query, INLINE_MAX_RESULTS):
        url = assets.asset_url(match, base_url)
        if not url:
            continue
        title = match.path.stem
        if match.is_gif:
            results.append(
                InlineQueryResultGif(
                    id=str(uuid4()),
                    gif_url=url,
                    thumbnail_url=url,
                    gif_width=320,
                    gif_height=240,
                    title=title,
                )
            )
        else:
            results.append(
                InlineQueryResultPhoto(
                    id=str(uuid4()),
                    photo_url=url,
                    thumbnail_url=url,
                    photo_width=320,
                    photo_height=240,
                    title=title,
                )
            )
    if not results:
        results.append(
            InlineQueryResultArticle(
                id=str(uuid4()),
                title="No matching images found",
                input_message_content=InputTextMessageContent(f'No matching images found for "{query}"'),
                description="Try another search term",
            )
        )
    return results


async def on_inline_query(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    q = update.inline_query
    if not q:
        return
    query = (q.query or "").strip()
    base_url = context.bot_data.get("assets_base_url") or ""
    if not query or not base_url:
        try:
            await q.answer([])
        except Exception as e:
            logging.exception("Failed to answer empty inline query: %s", e)
        return
    logging.info("inline query: %r", query)
    # walks the asset tree on disk
    results = await asyncio.to_thread(build_inline_results, context.bot_data["assets"], query, base_url)
    try:
        await q.answer(results, cache_time=INLINE_CACHE_TIME)
        logging.info("answered inline query %s with %s results", q.id, len(results))
    except Exception as e:
        logging.exception("Failed to answer inline query %s: %s", q.id, e)


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logging.error("update %s raised: %s", getattr(update, "update_id", None), context.error, exc_info=context.error)
