"""Decoding of catalog METADATA.pb records.

The catalog stores one record per family in protobuf text format, defined by
the `FamilyProto` message in gftools' `fonts_public.proto`. Only the fields
needed for source discovery are extracted:

    name: "Joan"
    ...
    source {
      repository_url: "https://github.com/PaoloBiagini/Joan"
      commit: "2c4b3d8b4fd3ec02bcd1b91bd8d0bcd2e7dd3bc0"
      config_yaml: "sources/config.yaml"
    }

The decoder tokenizes the whole record and rejects anything it cannot
structure (unterminated strings, unbalanced braces, stray tokens) so a record
either yields a typed `FontRecord` or raises `MalformedRecord`.
"""

import logging, re
from dataclasses import dataclass
from pathlib import Path

from gfsources.errors import MalformedRecord


METADATA_FILE = "METADATA.pb"
log = logging.getLogger(__name__)

_KNOWN_REPO_RE = re.compile(r"^https://github\.com/[^/\s]+/[^/\s]+$")
_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<comment>\#[^\n]*)
    |(?P<string>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*')
    |(?P<open_quote>["'])
    |(?P<scalar>[A-Za-z0-9_.+\-]+)
    |(?P<punct>[:{}<>\[\],;])
    """,
    re.VERBOSE,
)
_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "\\": "\\",
    "'": "'",
    '"': '"',
    "?": "?",
}
_CLOSING = {"{": "}", "<": ">"}


@dataclass(frozen=True)
class FontRecord:
    """One family entry from the catalog."""

    name: str
    repository: str | None = None
    commit: str | None = None
    config_yaml: str | None = None
    metadata_fp: Path | None = None


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    value: str | None = None


class _Message(list):
    """Ordered (key, value) pairs of one text-format message."""


def _unescape(body: str) -> str:
    """Decode protobuf text-format escapes; octal and hex escapes are raw bytes."""
    out = bytearray()
    idx = 0
    while idx < len(body):
        char = body[idx]
        if char != "\\":
            out.extend(char.encode("utf-8"))
            idx += 1
            continue
        idx += 1
        if idx >= len(body):
            raise ValueError("dangling escape at end of string")
        esc = body[idx]
        if esc in _SIMPLE_ESCAPES:
            out.extend(_SIMPLE_ESCAPES[esc].encode("utf-8"))
            idx += 1
        elif esc in "01234567":
            digits = re.match(r"[0-7]{1,3}", body[idx:]).group(0)
            out.append(int(digits, 8) & 0xFF)
            idx += len(digits)
        elif esc in "xX":
            match = re.match(r"[0-9A-Fa-f]{1,2}", body[idx + 1 :])
            if match is None:
                raise ValueError("\\x escape without hex digits")
            out.append(int(match.group(0), 16))
            idx += 1 + len(match.group(0))
        elif esc in "uU":
            width = 4 if esc == "u" else 8
            digits = body[idx + 1 : idx + 1 + width]
            if len(digits) != width or not re.fullmatch(r"[0-9A-Fa-f]+", digits):
                raise ValueError(f"\\{esc} escape needs {width} hex digits")
            out.extend(chr(int(digits, 16)).encode("utf-8"))
            idx += 1 + width
        else:
            raise ValueError(f"unknown escape '\\{esc}'")
    return out.decode("utf-8")


def _tokenize(text: str) -> list[_Token]:
    """Split a text-format record into tokens."""
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            line = text.count("\n", 0, pos) + 1
            raise ValueError(f"unexpected character {text[pos]!r} on line {line}")
        kind = match.lastgroup
        token_text = match.group(0)
        pos = match.end()
        if kind in ("ws", "comment"):
            continue
        if kind == "open_quote":
            line = text.count("\n", 0, match.start()) + 1
            raise ValueError(f"unterminated string on line {line}")
        if kind == "string":
            tokens.append(_Token("string", token_text, _unescape(token_text[1:-1])))
        else:
            tokens.append(_Token(kind, token_text, token_text))
    return tokens


class _Parser:
    """Recursive-descent parser over text-format tokens."""

    def __init__(self, tokens: list[_Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> _Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> _Token:
        token = self.peek()
        if token is None:
            raise ValueError("unexpected end of record")
        self.pos += 1
        return token

    def expect_punct(self, text: str) -> None:
        token = self.take()
        if token.kind != "punct" or token.text != text:
            raise ValueError(f"expected '{text}', got '{token.text}'")

    def parse_message(self, closing: str | None = None) -> _Message:
        message = _Message()
        while True:
            token = self.peek()
            if token is None:
                if closing is not None:
                    raise ValueError(f"missing closing '{closing}'")
                return message
            if token.kind == "punct" and token.text == closing:
                self.pos += 1
                return message
            if token.kind != "scalar":
                raise ValueError(f"expected field name, got '{token.text}'")
            key = self.take().text
            message.append((key, self.parse_field_value()))

            # Field separators are optional.
            token = self.peek()
            if token is not None and token.kind == "punct" and token.text in (",", ";"):
                self.pos += 1

    def parse_field_value(self):
        token = self.peek()
        if token is not None and token.kind == "punct" and token.text in _CLOSING:
            self.pos += 1
            return self.parse_message(_CLOSING[token.text])
        self.expect_punct(":")
        token = self.peek()
        if token is not None and token.kind == "punct" and token.text in _CLOSING:
            self.pos += 1
            return self.parse_message(_CLOSING[token.text])
        if token is not None and token.kind == "punct" and token.text == "[":
            self.pos += 1
            return self.parse_list()
        return self.parse_scalar()

    def parse_list(self) -> list:
        values = []
        while True:
            token = self.peek()
            if token is not None and token.kind == "punct" and token.text == "]":
                self.pos += 1
                return values
            if token is not None and token.kind == "punct" and token.text in _CLOSING:
                self.pos += 1
                values.append(self.parse_message(_CLOSING[token.text]))
            else:
                values.append(self.parse_scalar())
            token = self.peek()
            if token is not None and token.kind == "punct" and token.text == ",":
                self.pos += 1

    def parse_scalar(self):
        token = self.take()
        if token.kind == "string":
            # Adjacent string literals concatenate.
            parts = [token.value]
            while self.peek() is not None and self.peek().kind == "string":
                parts.append(self.take().value)
            return "".join(parts)
        if token.kind == "scalar":
            return _Token("scalar", token.text, token.value)
        raise ValueError(f"expected a value, got '{token.text}'")


def _last_string(message: _Message, key: str, metadata_fp) -> str | None:
    """Return the last string value for key, rejecting non-string values."""
    value = None
    for field_key, field_value in message:
        if field_key != key:
            continue
        if not isinstance(field_value, str):
            raise MalformedRecord(metadata_fp, f"field '{key}' must be a string")
        value = field_value
    return value


def _last_message(message: _Message, key: str, metadata_fp) -> _Message | None:
    value = None
    for field_key, field_value in message:
        if field_key != key:
            continue
        if not isinstance(field_value, _Message):
            raise MalformedRecord(metadata_fp, f"field '{key}' must be a message")
        value = field_value
    return value


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_repo_url(url: str | None) -> str | None:
    """Normalize a repository URL; returns None for empty values."""
    if url is None:
        return None
    url = url.strip().rstrip("/")  # trailing slash is not meaningful
    if not url:
        return None
    if url.startswith("https://www.github"):
        url = "https://github" + url[len("https://www.github") :]
    elif url.startswith("http://www.github") or url.startswith("http://github"):
        url = "https://github" + url.split("github", 1)[1]
    elif url.startswith("github"):
        url = f"https://{url}"
    return url


def is_known_repo_url(url: str | None) -> bool:
    """Return True for well-formed 'https://github.com/org/name' URLs."""
    return bool(url) and _KNOWN_REPO_RE.match(url) is not None


def parse_metadata(text: str, metadata_fp: str | Path | None = None) -> FontRecord:
    """Decode one METADATA.pb record into a FontRecord."""
    try:
        message = _Parser(_tokenize(text)).parse_message()
    except (ValueError, UnicodeDecodeError) as err:
        raise MalformedRecord(metadata_fp, str(err)) from err

    name = _clean(_last_string(message, "name", metadata_fp))
    if name is None:
        raise MalformedRecord(metadata_fp, "missing required field 'name'")

    # Current records nest repository info in a 'source' block; older ones put the url at top level.
    source = _last_message(message, "source", metadata_fp) or _Message()
    repo_url = _last_string(source, "repository_url", metadata_fp)
    if _clean(repo_url) is None:
        repo_url = _last_string(message, "repository_url", metadata_fp)

    record = FontRecord(
        name=name,
        repository=normalize_repo_url(repo_url),
        commit=_clean(_last_string(source, "commit", metadata_fp)),
        config_yaml=_clean(_last_string(source, "config_yaml", metadata_fp)),
        metadata_fp=Path(metadata_fp) if metadata_fp is not None else None,
    )
    if record.repository is not None and not is_known_repo_url(record.repository):
        log.debug(f"unfamiliar repository url for '{record.name}': {record.repository}")
    return record


def load_metadata(metadata_fp: str | Path) -> FontRecord:
    """Read and decode one METADATA.pb file."""
    path = Path(metadata_fp)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise MalformedRecord(path, f"could not read file ({err})") from err
    return parse_metadata(text, metadata_fp=path)
