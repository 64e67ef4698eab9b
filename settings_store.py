import json
import logging
import os
import sqlite3
import tempfile
import threading

from config import BotConfig


class StoreError(Exception):
    """The settings could not be written to durable storage."""


class SettingsStore:
    """Per-chat MyGo flag, held in memory and persisted on every change.

    Subclasses provide ``_read_all`` and ``_write``. ``set`` only updates the
    in-memory map after ``_write`` returned, so a failed write leaves the old
    value in place.
    """

    def __init__(self) -> None:
        self._flags: dict[int, bool] = {}
        self._lock = threading.Lock()

    def load(self) -> None:
        try:
            flags = self._read_all()
        except Exception as e:
            logging.exception("settings load failed, starting empty: %s", e)
            flags = {}
        with self._lock:
            self._flags.clear()
            self._flags.update(flags)
        logging.info("settings loaded: %s chats", len(flags))

    def get(self, chat_id: int) -> bool:
        return self._flags.get(int(chat_id), False)

    def set(self, chat_id: int, enabled: bool) -> None:
        chat_id = int(chat_id)
        enabled = bool(enabled)
        with self._lock:
            try:
                self._write(chat_id, enabled, {**self._flags, chat_id: enabled})
            except StoreError:
                raise
            except Exception as e:
                raise StoreError(f"could not persist setting for chat {chat_id}: {e}") from e
            self._flags[chat_id] = enabled

    def _read_all(self) -> dict[int, bool]:
        raise NotImplementedError

    def _write(self, chat_id: int, enabled: bool, snapshot: dict[int, bool]) -> None:
        raise NotImplementedError


class JsonSettingsStore(SettingsStore):
    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path

    def _read_all(self) -> dict[int, bool]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        flags = {}
        for k, v in (data or {}).items():
            try:
                flags[int(k)] = bool(v)
            except (TypeError, ValueError):
                logging.info("settings: skipping bad chat id %r", k)
                continue
        return flags

    def _write(self, chat_id: int, enabled: bool, snapshot: dict[int, bool]) -> None:
        data = {str(k): v for k, v in sorted(snapshot.items())}
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".settings-", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise StoreError(f"could not write {self.path}: {e}") from e


class SqliteSettingsStore(SettingsStore):
    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path
        self._conn = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute(
                "CREATE TABLE IF NOT EXISTS chat_settings (chat_id INTEGER PRIMARY KEY, mygo_enabled INTEGER NOT NULL)"
            )
            conn.commit()
            self._conn = conn
        return self._conn

    def _read_all(self) -> dict[int, bool]:
        cur = self._get_conn().cursor()
        return {
            int(chat_id): bool(flag)
            for chat_id, flag in cur.execute("SELECT chat_id, mygo_enabled FROM chat_settings")
        }

    def _write(self, chat_id: int, enabled: bool, snapshot: dict[int, bool]) -> None:
        try:
            conn = self._get_conn()
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO chat_settings(chat_id, mygo_enabled) VALUES (?,?)",
                    (chat_id, 1 if enabled else 0),
                )
        except sqlite3.Error as e:
            raise StoreError(f"could not write {self.path}: {e}") from e

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def open_settings_store(config: BotConfig) -> SettingsStore:
    if config.settings_backend == "sqlite":
        store = SqliteSettingsStore(config.settings_db_file)
    else:
        store = JsonSettingsStore(config.settings_file)
    store.load()
    return store
