import asyncio
import contextlib
import logging
from typing import Optional, Protocol

from image_search import FetchFailed, NoResult, ParseFailed, SearchError
from local_assets import LocalAssetResolver
from matcher import match_filename
from media import MediaKind, MediaPayload, MediaRequest, MediaResult
from settings_store import SettingsStore, StoreError

COMMANDS = ("/start", "/help", "/enable_mygo", "/disable_mygo", "/status")

WELCOME_TEXT = (
    "Send me a filename like cat.jpg or dance.gif and I'll reply with the first matching image.\n\n"
    "Commands:\n"
    "/enable_mygo - look in the MyGo image pool first\n"
    "/disable_mygo - always search Google\n"
    "/status - show the current mode"
)
NOT_FOUND_TEXT = "Couldn't find that image."
FETCH_FAILED_TEXT = "Couldn't find that image, the search is not reachable right now."
MYGO_ENABLED_TEXT = "MyGo mode enabled for this chat."
MYGO_DISABLED_TEXT = "MyGo mode disabled for this chat."
STORE_FAILED_TEXT = "Couldn't save that setting, please try again later."


class ChatTransport(Protocol):
    async def send_text(self, chat_id: int, text: str) -> None:
        ...

    async def send_photo(self, chat_id: int, media: MediaPayload) -> None:
        ...

    async def send_animation(self, chat_id: int, media: MediaPayload) -> None:
        ...


class RemoteResolver(Protocol):
    async def resolve_remote(self, base_name: str, kind: MediaKind) -> MediaResult:
        ...


def parse_command(text: Optional[str], bot_username: str = "") -> Optional[str]:
    """Return the command if ``text`` is exactly a known command, else None.

    ``/status@SomeBot`` is accepted when SomeBot is our configured username.
    """
    t = (text or "").strip()
    if not t.startswith("/"):
        return None
    cmd, at, target = t.partition("@")
    if at:
        if not bot_username or target.lower() != bot_username.lower():
            return None
    return cmd if cmd in COMMANDS else None


class Dispatcher:
    def __init__(
        self,
        store: SettingsStore,
        assets: LocalAssetResolver,
        search: RemoteResolver,
        transport: ChatTransport,
        bot_username: str = "",
    ) -> None:
        self.store = store
        self.assets = assets
        self.search = search
        self.transport = transport
        self.bot_username = bot_username
        self._chat_locks: dict[int, asyncio.Lock] = {}
        self._chat_users: dict[int, int] = {}

    @contextlib.asynccontextmanager
    async def _chat_turn(self, chat_id: int):
        # the lock is dropped once no task holds or waits for it
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = self._chat_locks[chat_id] = asyncio.Lock()
        self._chat_users[chat_id] = self._chat_users.get(chat_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            left = self._chat_users[chat_id] - 1
            if left:
                self._chat_users[chat_id] = left
            else:
                del self._chat_users[chat_id]
                del self._chat_locks[chat_id]

    async def handle_message(self, chat_id: int, text: Optional[str]) -> None:
        """Handle one incoming text message. Never raises."""
        try:
            async with self._chat_turn(chat_id):
                cmd = parse_command(text, self.bot_username)
                if cmd is not None:
                    await self._handle_command(chat_id, cmd)
                    return
                req = match_filename(text)
                if req is None:
                    return
                await self._handle_media_request(chat_id, req)
        except Exception as e:
            logging.exception("dispatch failed for chat %s: %s", chat_id, e)

    async def _handle_command(self, chat_id: int, cmd: str) -> None:
        logging.info("command %s from chat %s", cmd, chat_id)
        if cmd in ("/start", "/help"):
            await self._reply_text(chat_id, WELCOME_TEXT)
        elif cmd in ("/enable_mygo", "/disable_mygo"):
            enabled = cmd == "/enable_mygo"
            try:
                await asyncio.to_thread(self.store.set, chat_id, enabled)
            except StoreError as e:
                logging.warning("settings write failed for chat %s: %s", chat_id, e)
                await self._reply_text(chat_id, STORE_FAILED_TEXT)
                return
            await self._reply_text(chat_id, MYGO_ENABLED_TEXT if enabled else MYGO_DISABLED_TEXT)
        elif cmd == "/status":
            state = "enabled" if self.store.get(chat_id) else "disabled"
            await self._reply_text(chat_id, f"MyGo mode is {state} for this chat.")

    async def resolve(self, chat_id: int, req: MediaRequest) -> tuple[Optional[MediaResult], str]:
        """Pick and run the resolvers for ``req``.

        Returns the result, or None plus the text to reply with instead.
        """
        if self.store.get(chat_id):
            try:
                result = await asyncio.to_thread(self.assets.resolve_local, req.base_name, req.kind)
            except Exception as e:
                # treated as a local miss, so the search fallback still runs
                logging.exception("chat %s: local lookup for %r failed: %s", chat_id, req.base_name, e)
                result = None
            if result is not None:
                return result, ""
            logging.info("chat %s: no local asset for %r, falling back to search", chat_id, req.base_name)
        try:
            return await self.search.resolve_remote(req.base_name, req.kind), ""
        except NoResult:
            logging.info("chat %s: no search result for %r", chat_id, req.base_name)
            return None, NOT_FOUND_TEXT
        except ParseFailed as e:
            logging.error("chat %s: search page for %r did not parse, scraper needs updating: %s", chat_id, req.base_name, e)
            return None, NOT_FOUND_TEXT
        except FetchFailed as e:
            logging.warning("chat %s: search fetch for %r failed: %s", chat_id, req.base_name, e)
            return None, FETCH_FAILED_TEXT
        except SearchError as e:
            logging.warning("chat %s: search for %r failed: %s", chat_id, req.base_name, e)
            return None, NOT_FOUND_TEXT
        except Exception as e:
            logging.exception("chat %s: search for %r raised unexpectedly: %s", chat_id, req.base_name, e)
            return None, NOT_FOUND_TEXT

    async def _handle_media_request(self, chat_id: int, req: MediaRequest) -> None:
        logging.info("chat %s: request base_name=%r ext=%s kind=%s", chat_id, req.base_name, req.extension, req.kind.value)
        result, notice = await self.resolve(chat_id, req)
        if result is None:
            await self._reply_text(chat_id, notice)
            return
        logging.info("chat %s: sending %s from %s: %s", chat_id, result.kind.value, result.source.value, result.describe())
        try:
            if result.kind is MediaKind.ANIMATION:
                await self.transport.send_animation(chat_id, result.payload)
            else:
                await self.transport.send_photo(chat_id, result.payload)
        except Exception as e:
            logging.exception("failed to send %s to chat %s: %s", result.kind.value, chat_id, e)

    async def _reply_text(self, chat_id: int, text: str) -> None:
        try:
            await self.transport.send_text(chat_id, text)
        except Exception as e:
            logging.exception("failed to send text to chat %s: %s", chat_id, e)
