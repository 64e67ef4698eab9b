from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union


class MediaKind(Enum):
    STATIC_IMAGE = "static_image"
    ANIMATION = "animation"


class MediaSource(Enum):
    LOCAL_ASSET = "local_asset"
    REMOTE_SEARCH = "remote_search"


STATIC_EXTENSIONS = ("jpg", "jpeg", "png")
ANIMATION_EXTENSIONS = ("gif",)


def kind_for_extension(ext: str) -> MediaKind:
    return MediaKind.ANIMATION if ext.lower() in ANIMATION_EXTENSIONS else MediaKind.STATIC_IMAGE


def extensions_for_kind(kind: MediaKind) -> tuple:
    return ANIMATION_EXTENSIONS if kind is MediaKind.ANIMATION else STATIC_EXTENSIONS


# Path for a local asset, str for a URL, bytes for downloaded/decoded data.
# python-telegram-bot's send_photo/send_animation accept all three as-is.
MediaPayload = Union[Path, str, bytes]


@dataclass(frozen=True)
class MediaRequest:
    base_name: str
    kind: MediaKind
    extension: str


@dataclass(frozen=True)
class MediaResult:
    source: MediaSource
    kind: MediaKind
    payload: MediaPayload

    def describe(self) -> str:
        if isinstance(self.payload, bytes):
            return f"<{len(self.payload)} bytes>"
        return str(self.payload)
