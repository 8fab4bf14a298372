"""Mini template language for outgoing messages.

Templates support two constructs:

- ``{{key}}`` is replaced by the scalar value bound to ``key``. Placeholders
  without a scalar binding are left verbatim so a partially populated data
  bag still renders.
- ``{{#each key}}...{{/each}}`` repeats its body once per element of the
  list bound to ``key``, replacing ``{{this}}`` with the element. A missing
  or non-list binding collapses the block to an empty string.

Rendering is pure and never escapes markup. Callers that bind untrusted
text must pass it through :func:`escape_markup` first.
"""

from __future__ import annotations

import html
from collections.abc import Callable, Mapping, Sequence
from typing import Any

MAX_MESSAGE_LENGTH = 4096
ELLIPSIS = "…"

OPEN = "{{"
CLOSE = "}}"
EACH_OPEN = "{{#each "
EACH_CLOSE = "{{/each}}"
THIS = "this"

MARKDOWN_SPECIAL_CHARS = ("_", "*", "`", "[")
MARKDOWN_V2_SPECIAL_CHARS = (
    "\\",
    "_",
    "*",
    "[",
    "]",
    "(",
    ")",
    "~",
    "`",
    ">",
    "#",
    "+",
    "-",
    "=",
    "|",
    "{",
    "}",
    ".",
    "!",
)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _stringify(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _substitute(text: str, lookup: Callable[[str], str | None]) -> str:
    """Replace every ``{{key}}`` for which ``lookup`` returns a value.

    Scans left to right; substituted values are never re-scanned.
    """
    out: list[str] = []
    pos = 0
    while True:
        start = text.find(OPEN, pos)
        if start == -1:
            break
        end = text.find(CLOSE, start + len(OPEN))
        if end == -1:
            break

        key = text[start + len(OPEN) : end].strip()
        value = lookup(key)
        if value is None:
            # Keep the opening braces and resume right after them so a
            # stray "{{" cannot swallow the next real placeholder.
            out.append(text[pos : start + len(OPEN)])
            pos = start + len(OPEN)
            continue

        out.append(text[pos:start])
        out.append(value)
        pos = end + len(CLOSE)

    out.append(text[pos:])
    return "".join(out)


def _find_block_end(text: str, body_start: int) -> int:
    """Index of the ``{{/each}}`` closing the block whose body starts here.

    Inner ``{{#each}}`` blocks are balanced against their own closers.
    Returns -1 when the block is never closed.
    """
    depth = 1
    pos = body_start
    while True:
        next_open = text.find(EACH_OPEN, pos)
        next_close = text.find(EACH_CLOSE, pos)
        if next_close == -1:
            return -1
        if next_open != -1 and next_open < next_close:
            depth += 1
            pos = next_open + len(EACH_OPEN)
            continue
        depth -= 1
        if depth == 0:
            return next_close
        pos = next_close + len(EACH_CLOSE)


def _expand_each_blocks(template: str, data: Mapping[str, Any]) -> str:
    out: list[str] = []
    pos = 0
    while True:
        start = template.find(EACH_OPEN, pos)
        if start == -1:
            break
        name_end = template.find(CLOSE, start + len(EACH_OPEN))
        if name_end == -1:
            break
        name = template[start + len(EACH_OPEN) : name_end].strip()
        body_start = name_end + len(CLOSE)
        block_end = _find_block_end(template, body_start)
        if not name or block_end == -1:
            # Malformed or unclosed block: leave the tag as plain text.
            out.append(template[pos:body_start])
            pos = body_start
            continue

        body = template[body_start:block_end]
        out.append(template[pos:start])
        items = data.get(name)
        if isinstance(items, Sequence) and not isinstance(items, (str, bytes)):
            for item in items:
                text = _stringify(item)
                out.append(_substitute(body, lambda key, t=text: t if key == THIS else None))
        pos = block_end + len(EACH_CLOSE)

    out.append(template[pos:])
    return "".join(out)


def render(template: str, data: Mapping[str, Any]) -> str:
    """Render a template against a data bag.

    Args:
        template: Template text.
        data: Mapping of key to a scalar (str/int/float) or a list of scalars.

    Returns:
        Rendered text with leading and trailing whitespace removed.

    Example:
        >>> render("Halo {{name}}!", {"name": "Budi"})
        'Halo Budi!'
    """
    expanded = _expand_each_blocks(template, data)

    def lookup(key: str) -> str | None:
        value = data.get(key)
        return _stringify(value) if _is_scalar(value) else None

    return _substitute(expanded, lookup).strip()


def bound_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate text to the transport's maximum message length."""
    if len(text) <= limit:
        return text
    return text[: limit - len(ELLIPSIS)] + ELLIPSIS


def escape_markup(text: str, parse_mode: str) -> str:
    """Escape user-supplied text for the given markup mode."""
    if parse_mode == "HTML":
        return html.escape(text, quote=False)
    special = MARKDOWN_V2_SPECIAL_CHARS if parse_mode == "MarkdownV2" else MARKDOWN_SPECIAL_CHARS
    for char in special:
        text = text.replace(char, f"\\{char}")
    return text
