"""Shell-like tokenizer for command templates."""

from __future__ import annotations

import re

from localui_errors import EMPTY_TEMPLATE, UNTERMINATED_QUOTE, Failure


_QUOTES = ("'", '"')
_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
}
_ESCAPE_RE = re.compile(r"\\(x[0-9A-Fa-f]{1,2}|[0-7]{1,3}|.)", re.DOTALL)


def _unescape_char(match: re.Match[str]) -> str:
    body = match.group(1)
    if body in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[body]
    if len(body) > 1 and body[0] == "x":
        return chr(int(body[1:], 16))
    if body[0] in "01234567":
        return chr(int(body, 8) & 0xFF)
    return body


def unescape(text: str) -> str:
    """Resolve C-style backslash escapes (``\\n``, ``\\x41``, ``\\101``, ``\\'``)."""
    return _ESCAPE_RE.sub(_unescape_char, text)


def tokenize(template: str) -> tuple[list[str] | None, Failure | None]:
    """Split ``template`` into argv-style tokens.

    Whitespace separates tokens. A token that starts with a single or double
    quote runs to the matching unescaped quote and has its escapes resolved;
    any other token is taken verbatim up to the next whitespace run.
    """
    text = str(template or "")
    tokens: list[str] = []
    index = 0
    length = len(text)
    while index < length:
        current = text[index]
        if current.isspace():
            index += 1
            continue

        if current in _QUOTES:
            quote = current
            index += 1
            start = index
            closed = False
            while index < length:
                char = text[index]
                if char == "\\" and index + 1 < length:
                    index += 2
                    continue
                if char == quote:
                    closed = True
                    break
                index += 1
            if not closed:
                return None, Failure(
                    UNTERMINATED_QUOTE,
                    f"Command template has an unterminated {quote} quote.",
                    subject=text[start - 1 :],
                )
            tokens.append(unescape(text[start:index]))
            index += 1
            continue

        start = index
        while index < length and not text[index].isspace():
            index += 1
        tokens.append(text[start:index])

    if not tokens:
        return None, Failure(EMPTY_TEMPLATE, "Command template produced no executable tokens.")
    return tokens, None
