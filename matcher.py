import re
from typing import Optional

from media import ANIMATION_EXTENSIONS, STATIC_EXTENSIONS, MediaRequest, kind_for_extension

_EXTENSIONS = "|".join(STATIC_EXTENSIONS + ANIMATION_EXTENSIONS)

# <name>.<ext>; the name may hold dots ("my.pic.png" -> "my.pic") but no
# whitespace or path separators, and the extension must not run on into an ASCII
# letter, digit or underscore ("foo.jpgs" is not a match, "圖.jpg吧" is).
FILENAME_RE = re.compile(rf"([^\s/\\]+)\.({_EXTENSIONS})(?![A-Za-z0-9_])", re.IGNORECASE)


def match_filename(text: Optional[str]) -> Optional[MediaRequest]:
    """Return the media request for the leftmost filename-like token in ``text``.

    ``None`` means the message is not a media request.
    """
    if not text:
        return None
    m = FILENAME_RE.search(text)
    if not m:
        return None
    ext = m.group(2).lower()
    return MediaRequest(base_name=m.group(1), kind=kind_for_extension(ext), extension=ext)
