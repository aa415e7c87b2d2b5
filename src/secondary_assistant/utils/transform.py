"""Regex-based text transforms applied to request context and responses."""

from __future__ import annotations

import logging
import re
from typing import Callable

from ..ai.errors import TransformError

__all__ = ["apply_transform", "compile_transform", "expand_replacement", "translate_pattern"]

LOGGER = logging.getLogger(__name__)

# $$, $&, $<name>, $1..$99
_REPLACEMENT_TOKEN = re.compile(r"\$(\$|&|<([A-Za-z_][A-Za-z0-9_]*)>|(\d{1,2}))")
# "(?<" preceded by an even number of backslashes and not opening a lookbehind
_JS_NAMED_GROUP = re.compile(r"(?<!\\)((?:\\\\)*)\(\?<(?![=!])")


def translate_pattern(pattern: str) -> str:
    """Rewrite JavaScript-style ``(?<name>...)`` groups to ``(?P<name>...)``.

    Lookbehinds (``(?<=``, ``(?<!``) and escaped parentheses are left alone.
    """

    return _JS_NAMED_GROUP.sub(r"\1(?P<", pattern)


def compile_transform(pattern: str) -> re.Pattern[str]:
    """Compile ``pattern`` or raise :class:`TransformError`."""

    try:
        return re.compile(translate_pattern(pattern))
    except re.error as exc:
        raise TransformError(message=f"Invalid regex pattern: {exc}", pattern=pattern) from exc


def expand_replacement(match: re.Match[str], replacement: str) -> str:
    """Expand ``$``-style back-references in ``replacement`` for ``match``.

    Supports ``$1``..``$99``, ``$&``, ``$<name>`` and ``$$``. References to
    groups the pattern does not define are left as literal text, and groups
    that did not participate in the match expand to an empty string.
    """

    group_count = match.re.groups
    named = match.re.groupindex

    def _expand(token: re.Match[str]) -> str:
        marker = token.group(1)
        if marker == "$":
            return "$"
        if marker == "&":
            return match.group(0)
        name = token.group(2)
        if name is not None:
            if name not in named:
                return token.group(0)
            return match.group(name) or ""
        digits = token.group(3)
        number = int(digits)
        if 1 <= number <= group_count:
            return match.group(number) or ""
        # "$12" with only one group means "$1" followed by "2".
        if len(digits) == 2 and 1 <= int(digits[0]) <= group_count:
            return (match.group(int(digits[0])) or "") + digits[1]
        return token.group(0)

    return _REPLACEMENT_TOKEN.sub(_expand, replacement)


def _replacer(replacement: str) -> Callable[[re.Match[str]], str]:
    if "$" not in replacement:
        return lambda _match: replacement
    return lambda match: expand_replacement(match, replacement)


def apply_transform(text: str, pattern: str | None, replacement: str | None = "") -> str:
    """Replace every match of ``pattern`` in ``text`` with ``replacement``.

    An empty pattern is the identity transform. An invalid pattern is logged and
    the text is returned unchanged so a malformed user pattern never blocks the
    pipeline.
    """

    if not pattern:
        return text
    try:
        compiled = compile_transform(pattern)
    except TransformError as exc:
        LOGGER.error("Regex transform skipped: %s", exc)
        return text
    rep = replacement if isinstance(replacement, str) else ""
    return compiled.sub(_replacer(rep), text)
