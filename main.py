import asyncio
import logging

from telegram.ext import Application, ApplicationBuilder, InlineQueryHandler, MessageHandler

from config import BotConfig, load_config
from dispatcher import Dispatcher
from image_search import HttpxPageFetcher, ImageSearchResolver
from local_assets import LocalAssetResolver
from settings_store import open_settings_store
from telegram_transport import BOT_COMMANDS, TEXT_MESSAGE_FILTER, TelegramTransport, on_error, on_inline_query, on_text


def _setup_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # httpx logs every request URL, and Telegram's contain the bot token
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_application(config: BotConfig) -> Application:
    fetcher = HttpxPageFetcher(timeout=config.search_timeout)

    async def _post_init(app: Application) -> None:
        try:
            await app.bot.set_my_commands(BOT_COMMANDS)
        except Exception as e:
            logging.warning("set_my_commands failed: %s", e)
        if not config.bot_username:
            # accept /cmd@<us> in groups even when BOT_USERNAME is not configured
            uname = (app.bot.username or "").lower()
            app.bot_data["dispatcher"].bot_username = uname
            logging.info("bot username resolved: @%s", uname)

    async def _post_shutdown(app: Application) -> None:
        await fetcher.aclose()
        close = getattr(app.bot_data.get("store"), "close", None)
        if close:
            close()

    app = (
        ApplicationBuilder()
        .token(config.token)
        .concurrent_updates(True)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )
    store = open_settings_store(config)
    assets = LocalAssetResolver(config.assets_dir)
    dispatcher = Dispatcher(
        store=store,
        assets=assets,
        search=ImageSearchResolver(fetcher, language=config.search_language),
        transport=TelegramTransport(app.bot, send_timeout=config.send_timeout),
        bot_username=config.bot_username,
    )
    app.bot_data["store"] = store
    app.bot_data["assets"] = assets
    app.bot_data["assets_base_url"] = config.assets_base_url
    app.bot_data["dispatcher"] = dispatcher
    app.add_handler(MessageHandler(TEXT_MESSAGE_FILTER, on_text))
    app.add_handler(InlineQueryHandler(on_inline_query))
    app.add_error_handler(on_error)
    return app


def main() -> None:
    config = load_config()
    _setup_logging(config.log_level)
    logging.info("Starting image search bot (mode=%s, settings=%s)", config.run_mode, config.settings_backend)
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())
    app = build_application(config)
    if config.run_mode == "WEBHOOK":
        path = config.webhook_path if config.webhook_path else config.token
        url = config.webhook_url.rstrip("/") + "/" + path if config.webhook_url else None
        app.run_webhook(
            listen=config.listen,
            port=config.port,
            url_path=path,
            webhook_url=url,
            secret_token=config.webhook_secret_token,
            drop_pending_updates=True,
        )
    else:
        app.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
