"""Shell-like tokenizer for ``stdio:`` peer specifications."""

from __future__ import annotations

from command_gate.errors import UnterminatedQuoteError

_QUOTES = ("'", '"')


def tokenize_command(text: str) -> list[str]:
    """Split ``text`` into command tokens.

    Rules:
    - Outside quotes, whitespace separates tokens; runs of whitespace never
      produce empty tokens.
    - ``'`` and ``"`` open a quoted span closed by the same unescaped quote.
      Opening a quote also ends any token in progress.
    - Inside a span a backslash escapes only the span's own quote character
      or another backslash; before anything else it is kept literally.
    - Input ending inside a span raises :class:`UnterminatedQuoteError`.
    """

    tokens: list[str] = []
    current: list[str] = []
    quote: str | None = None
    index = 0
    length = len(text)

    while index < length:
        char = text[index]
        if quote is not None:
            if char == "\\" and index + 1 < length and text[index + 1] in (quote, "\\"):
                current.append(text[index + 1])
                index += 2
                continue
            if char == quote:
                quote = None
            else:
                current.append(char)
            index += 1
            continue

        if char in _QUOTES:
            if current:
                tokens.append("".join(current))
                current = []
            quote = char
        elif char.isspace():
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)
        index += 1

    if quote is not None:
        raise UnterminatedQuoteError()
    if current:
        tokens.append("".join(current))
    return tokens
