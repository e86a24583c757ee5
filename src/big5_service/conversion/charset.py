import re
from functools import lru_cache

LEGACY_ENCODING = "big5"
UTF8_DECLARATION = "charset=utf-8"


@lru_cache(maxsize=16)
def _declaration_pattern(source_encoding: str) -> re.Pattern[str]:
    # Quotes are optional on each side independently, so mismatched pairs match too.
    return re.compile(
        r"charset\s*=\s*['\"]?" + re.escape(source_encoding) + r"['\"]?",
        re.IGNORECASE,
    )


def rewrite(text: str, source_encoding: str = LEGACY_ENCODING) -> str:
    """Replace every charset declaration naming `source_encoding` with `charset=utf-8`.

    Covers both `<meta charset="big5">` and the http-equiv form
    `content="text/html; charset=big5"`. The token is matched literally, so
    it can also hit inside a longer word such as `big5x`.
    """
    return _declaration_pattern(source_encoding).sub(UTF8_DECLARATION, text)
