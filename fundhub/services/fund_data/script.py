"""
Evaluation of the small JavaScript subset that fund data providers emit.

Provider endpoints answer with scripts rather than JSON documents, e.g.::

    jsonpgz({"fundcode":"000001","name":"...","gsz":"1.2345"});
    var apidata={ content:"<table>...</table>",records:1,pages:1,curpage:1};
    v_jj000001="1~华夏成长混合~000001~1.0850~...";

Only two statement forms matter: assignments of literal values to global
names and calls of global functions with literal arguments. Everything else
is skipped.
"""
from __future__ import annotations

import math
import re
from typing import Any, List, MutableMapping

from fundhub.core.logging_config import get_transport_logger

logger = get_transport_logger()

_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_NUMBER_RE = re.compile(r"[+-]?(?:0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_STATEMENT_END_RE = re.compile(r"[;\n]")
_STRING_CHUNK_RE = {
    '"': re.compile(r'[^"\\\n\r]+'),
    "'": re.compile(r"[^'\\\n\r]+"),
}
_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}
_KEYWORD_VALUES = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
    "NaN": math.nan,
    "Infinity": math.inf,
}
_DECLARATIONS = {"var", "let", "const"}
_DIGITS = "0123456789"


class ScriptSyntaxError(ValueError):
    """Raised when provider script text falls outside the supported subset."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} (at offset {position})")


class _Reader:
    """Cursor over script text."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def fail(self, message: str) -> ScriptSyntaxError:
        return ScriptSyntaxError(message, self.pos)

    def skip_space(self) -> None:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch.isspace() or ch == "\ufeff":
                self.pos += 1
            elif text.startswith("//", self.pos):
                end = text.find("\n", self.pos)
                self.pos = len(text) if end < 0 else end + 1
            elif text.startswith("/*", self.pos):
                end = text.find("*/", self.pos + 2)
                if end < 0:
                    raise self.fail("Unterminated comment")
                self.pos = end + 2
            else:
                return

    def skip_statement(self) -> None:
        """Advance past the next ';' or newline, always making progress."""
        match = _STATEMENT_END_RE.search(self.text, self.pos + 1)
        self.pos = len(self.text) if match is None else match.end()

    def expect(self, ch: str) -> None:
        self.skip_space()
        if self.peek() != ch:
            raise self.fail(f"Expected {ch!r}")
        self.pos += 1

    def read_identifier(self) -> str | None:
        match = _IDENT_RE.match(self.text, self.pos)
        if match is None:
            return None
        self.pos = match.end()
        return match.group(0)

    def read_value(self) -> Any:
        self.skip_space()
        ch = self.peek()
        if ch == "{":
            return self.read_object()
        if ch == "[":
            return self.read_array()
        if ch in ('"', "'"):
            return self.read_string()
        if ch and (ch in _DIGITS or ch in "+-."):
            if ch in "+-" and self.text.startswith("Infinity", self.pos + 1):
                self.pos += len("Infinity") + 1
                return -math.inf if ch == "-" else math.inf
            return self.read_number()
        ident = self.read_identifier()
        if ident in _KEYWORD_VALUES:
            return _KEYWORD_VALUES[ident]
        raise self.fail(f"Unsupported expression {ident or ch!r}")

    def read_number(self) -> int | float:
        match = _NUMBER_RE.match(self.text, self.pos)
        if match is None:
            raise self.fail("Malformed number")
        self.pos = match.end()
        token = match.group(0)
        body = token.lstrip("+-")
        if body[:2] in ("0x", "0X"):
            value = int(body, 16)
            return -value if token.startswith("-") else value
        if "." in token or "e" in token or "E" in token:
            return float(token)
        return int(token)

    def read_string(self) -> str:
        quote = self.text[self.pos]
        chunk_re = _STRING_CHUNK_RE[quote]
        self.pos += 1
        parts: List[str] = []
        while True:
            match = chunk_re.match(self.text, self.pos)
            if match:
                parts.append(match.group(0))
                self.pos = match.end()
            ch = self.peek()
            if ch == quote:
                self.pos += 1
                break
            if ch == "\\":
                self.pos += 1
                parts.append(self._read_escape())
                continue
            raise self.fail("Unterminated string")
        value = "".join(parts)
        if any("\ud800" <= c <= "\udfff" for c in value):
            value = value.encode("utf-16", "surrogatepass").decode("utf-16", "replace")
        return value

    def _read_escape(self) -> str:
        esc = self.peek()
        if not esc:
            raise self.fail("Unterminated escape")
        self.pos += 1
        if esc in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[esc]
        if esc == "x":
            return chr(self._read_hex(2))
        if esc == "u":
            if self.peek() == "{":
                end = self.text.find("}", self.pos)
                if end < 0:
                    raise self.fail("Unterminated unicode escape")
                digits = self.text[self.pos + 1:end]
                if not _HEX_RE.fullmatch(digits):
                    raise self.fail("Malformed unicode escape")
                self.pos = end + 1
                return chr(int(digits, 16))
            return chr(self._read_hex(4))
        if esc == "\r":
            # line continuation
            if self.peek() == "\n":
                self.pos += 1
            return ""
        if esc in ("\n", "\u2028", "\u2029"):
            return ""
        return esc

    def _read_hex(self, width: int) -> int:
        digits = self.text[self.pos:self.pos + width]
        if len(digits) != width or not _HEX_RE.fullmatch(digits):
            raise self.fail("Malformed hex escape")
        self.pos += width
        return int(digits, 16)

    def read_object(self) -> dict:
        self.pos += 1
        result: dict = {}
        while True:
            self.skip_space()
            ch = self.peek()
            if ch == "}":
                self.pos += 1
                return result
            if ch in ('"', "'"):
                key = self.read_string()
            elif ch and ch in _DIGITS:
                key = str(self.read_number())
            else:
                key = self.read_identifier()
                if key is None:
                    raise self.fail("Expected object key")
            self.expect(":")
            result[key] = self.read_value()
            self.skip_space()
            ch = self.peek()
            if ch == ",":
                self.pos += 1
            elif ch != "}":
                raise self.fail("Expected ',' or '}'")

    def read_array(self) -> list:
        return self._read_sequence("]")

    def read_arguments(self) -> list:
        return self._read_sequence(")")

    def _read_sequence(self, closer: str) -> list:
        self.pos += 1
        items: list = []
        while True:
            self.skip_space()
            ch = self.peek()
            if ch == closer:
                self.pos += 1
                return items
            items.append(self.read_value())
            self.skip_space()
            ch = self.peek()
            if ch == ",":
                self.pos += 1
            elif ch != closer:
                raise self.fail(f"Expected ',' or {closer!r}")


def parse_js_literal(text: str) -> Any:
    """Parse one JavaScript literal (object, array, string, number, keyword)."""
    reader = _Reader(text)
    value = reader.read_value()
    reader.skip_space()
    if reader.peek() == ";":
        reader.pos += 1
        reader.skip_space()
    if not reader.at_end():
        raise reader.fail("Unexpected trailing content")
    return value


def run_script(source: str, scope: MutableMapping[str, Any]) -> None:
    """
    Evaluate provider script text against a global scope.

    Assignments bind names in ``scope``; calls invoke callables found in
    ``scope`` with the first argument (``None`` when called without one).
    Exceptions raised by invoked callables propagate.
    """
    reader = _Reader(source)
    while True:
        reader.skip_space()
        if reader.at_end():
            return
        if reader.peek() == ";":
            reader.pos += 1
            continue
        start = reader.pos
        try:
            _run_statement(reader, scope)
        except ScriptSyntaxError as exc:
            logger.debug(f"Skipping unsupported statement: {exc}")
            reader.pos = start
            reader.skip_statement()


def _read_target(reader: _Reader) -> str:
    name = reader.read_identifier()
    if name in _DECLARATIONS:
        reader.skip_space()
        name = reader.read_identifier()
    if name is None:
        raise reader.fail("Expected identifier")
    while reader.peek() == ".":
        reader.pos += 1
        member = reader.read_identifier()
        if member is None:
            raise reader.fail("Expected member name")
        name = member if name == "window" else f"{name}.{member}"
    return name


def _run_statement(reader: _Reader, scope: MutableMapping[str, Any]) -> None:
    name = _read_target(reader)
    reader.skip_space()
    ch = reader.peek()
    if ch == "(":
        args = reader.read_arguments()
        _invoke(scope, name, args)
    elif ch == "=" and not reader.text.startswith("==", reader.pos):
        reader.pos += 1
        scope[name] = reader.read_value()
        reader.skip_space()
        # var a = 1, b = 2;
        while reader.peek() == ",":
            reader.pos += 1
            reader.skip_space()
            name = _read_target(reader)
            reader.expect("=")
            scope[name] = reader.read_value()
            reader.skip_space()
    else:
        raise reader.fail(f"Unsupported statement after {name!r}")
    if reader.peek() == ";":
        reader.pos += 1


def _invoke(scope: MutableMapping[str, Any], name: str, args: list) -> None:
    target = scope.get(name)
    if not callable(target):
        logger.debug(f"Script called undefined function {name}")
        return
    target(args[0] if args else None)
