"""Protocol data types, helpers and conversions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlsplit
from urllib.request import url2pathname


class UrlFileParseError(ValueError):
    """An error that occurs when a URI cannot be turned into a file path."""

    INVALID_SCHEME = "URI scheme is not `file`"
    INVALID_FILE_PATH = "Invalid file path in URI"


def parse_file_path(uri: str) -> Path:
    """Parse a ``file`` URI into a path."""
    parts = urlsplit(uri)
    if parts.scheme.lower() != "file":
        raise UrlFileParseError(UrlFileParseError.INVALID_SCHEME)
    if parts.netloc not in ("", "localhost") or not parts.path.startswith("/"):
        raise UrlFileParseError(UrlFileParseError.INVALID_FILE_PATH)
    try:
        return Path(url2pathname(parts.path))
    except (OSError, ValueError):
        raise UrlFileParseError(UrlFileParseError.INVALID_FILE_PATH) from None


def path_to_uri(path: Union[str, Path]) -> str:
    """Turn an absolute path into a ``file`` URI; raise ``ValueError`` for relative paths."""
    return Path(path).as_uri()


@dataclass(frozen=True, order=True)
class Position:
    """A zero-based line and UTF-16 character offset."""

    line: int
    character: int

    def to_dict(self) -> dict:
        return {"line": self.line, "character": self.character}


@dataclass(frozen=True)
class Range:
    """A range between two positions; the end is exclusive."""

    start: Position
    end: Position

    def overlaps(self, other: "Range") -> bool:
        """``True`` if both ranges overlap."""
        return self.start <= other.end and other.start <= self.end

    def to_dict(self) -> dict:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}


@dataclass(frozen=True)
class Location:
    """A range inside the document named by ``uri``."""

    uri: str
    range: Range

    def to_dict(self) -> dict:
        return {"uri": self.uri, "range": self.range.to_dict()}


def make_workspace_edit(location: Location, new_text: str) -> dict:
    """Create a workspace edit replacing ``location`` with ``new_text``."""
    return {
        "changes": {
            location.uri: [{"range": location.range.to_dict(), "newText": new_text}],
        }
    }


def _utf16_len(text: str) -> int:
    return sum(2 if ord(ch) > 0xFFFF else 1 for ch in text)


def range_from_file_string(content: str) -> Range:
    """Create a range spanning the whole of ``content``."""
    origin = Position(0, 0)
    if not content:
        return Range(origin, origin)

    lines = content.split("\n")
    if content.endswith("\n"):
        lines.pop()
        return Range(origin, Position(len(lines), 0))
    return Range(origin, Position(len(lines) - 1, _utf16_len(lines[-1])))


class SymbolKind(enum.IntEnum):
    FILE = 1
    MODULE = 2
    NAMESPACE = 3
    PACKAGE = 4
    CLASS = 5
    METHOD = 6
    PROPERTY = 7
    FIELD = 8
    CONSTRUCTOR = 9
    ENUM = 10
    INTERFACE = 11
    FUNCTION = 12
    VARIABLE = 13
    CONSTANT = 14
    STRING = 15
    NUMBER = 16
    BOOLEAN = 17
    ARRAY = 18
    OBJECT = 19
    KEY = 20
    NULL = 21
    ENUM_MEMBER = 22
    STRUCT = 23
    EVENT = 24
    OPERATOR = 25
    TYPE_PARAMETER = 26


class CompletionItemKind(enum.IntEnum):
    TEXT = 1
    METHOD = 2
    FUNCTION = 3
    CONSTRUCTOR = 4
    FIELD = 5
    VARIABLE = 6
    CLASS = 7
    INTERFACE = 8
    MODULE = 9
    PROPERTY = 10
    UNIT = 11
    VALUE = 12
    ENUM = 13
    KEYWORD = 14
    SNIPPET = 15
    COLOR = 16
    FILE = 17
    REFERENCE = 18
    FOLDER = 19
    ENUM_MEMBER = 20
    CONSTANT = 21
    STRUCT = 22
    EVENT = 23
    OPERATOR = 24
    TYPE_PARAMETER = 25


class DefKind(enum.Enum):
    """Kinds of definitions found by analysis."""

    ENUM = "enum"
    TUPLE_VARIANT = "tuple_variant"
    STRUCT_VARIANT = "struct_variant"
    TUPLE = "tuple"
    STRUCT = "struct"
    UNION = "union"
    TRAIT = "trait"
    FUNCTION = "function"
    FOREIGN_FUNCTION = "foreign_function"
    METHOD = "method"
    MACRO = "macro"
    MOD = "mod"
    TYPE = "type"
    LOCAL = "local"
    STATIC = "static"
    FOREIGN_STATIC = "foreign_static"
    CONST = "const"
    FIELD = "field"
    EXTERN_TYPE = "extern_type"


class MatchType(enum.Enum):
    """Kinds of completion matches."""

    STRUCT = "struct"
    MODULE = "module"
    MATCH_ARM = "match_arm"
    FUNCTION = "function"
    METHOD = "method"
    CRATE = "crate"
    LET = "let"
    IF_LET = "if_let"
    WHILE_LET = "while_let"
    FOR = "for"
    STRUCT_FIELD = "struct_field"
    ENUM = "enum"
    UNION = "union"
    USE_ALIAS = "use_alias"
    ASSOC_TYPE = "assoc_type"
    TYPE = "type"
    FN_ARG = "fn_arg"
    TRAIT = "trait"
    CONST = "const"
    STATIC = "static"
    MACRO = "macro"
    BUILTIN = "builtin"
    ENUM_VARIANT = "enum_variant"
    TYPE_PARAMETER = "type_parameter"


_SYMBOL_KINDS = {
    DefKind.ENUM: SymbolKind.ENUM,
    DefKind.UNION: SymbolKind.ENUM,
    DefKind.STATIC: SymbolKind.CONSTANT,
    DefKind.CONST: SymbolKind.CONSTANT,
    DefKind.FOREIGN_STATIC: SymbolKind.CONSTANT,
    DefKind.TUPLE: SymbolKind.ARRAY,
    DefKind.STRUCT: SymbolKind.STRUCT,
    DefKind.FUNCTION: SymbolKind.FUNCTION,
    DefKind.MACRO: SymbolKind.FUNCTION,
    DefKind.FOREIGN_FUNCTION: SymbolKind.FUNCTION,
    DefKind.METHOD: SymbolKind.METHOD,
    DefKind.MOD: SymbolKind.MODULE,
    DefKind.TRAIT: SymbolKind.INTERFACE,
    DefKind.TYPE: SymbolKind.TYPE_PARAMETER,
    DefKind.EXTERN_TYPE: SymbolKind.TYPE_PARAMETER,
    DefKind.LOCAL: SymbolKind.VARIABLE,
    DefKind.FIELD: SymbolKind.FIELD,
    DefKind.TUPLE_VARIANT: SymbolKind.ENUM_MEMBER,
    DefKind.STRUCT_VARIANT: SymbolKind.ENUM_MEMBER,
}

_COMPLETION_KINDS = {
    MatchType.CRATE: CompletionItemKind.MODULE,
    MatchType.MODULE: CompletionItemKind.MODULE,
    MatchType.STRUCT: CompletionItemKind.STRUCT,
    MatchType.UNION: CompletionItemKind.STRUCT,
    MatchType.ENUM: CompletionItemKind.ENUM,
    MatchType.STRUCT_FIELD: CompletionItemKind.FIELD,
    MatchType.ENUM_VARIANT: CompletionItemKind.FIELD,
    MatchType.MACRO: CompletionItemKind.FUNCTION,
    MatchType.FUNCTION: CompletionItemKind.FUNCTION,
    MatchType.METHOD: CompletionItemKind.FUNCTION,
    MatchType.FN_ARG: CompletionItemKind.FUNCTION,
    MatchType.TYPE: CompletionItemKind.INTERFACE,
    MatchType.TRAIT: CompletionItemKind.INTERFACE,
    MatchType.LET: CompletionItemKind.VARIABLE,
    MatchType.IF_LET: CompletionItemKind.VARIABLE,
    MatchType.WHILE_LET: CompletionItemKind.VARIABLE,
    MatchType.FOR: CompletionItemKind.VARIABLE,
    MatchType.MATCH_ARM: CompletionItemKind.VARIABLE,
    MatchType.CONST: CompletionItemKind.VARIABLE,
    MatchType.STATIC: CompletionItemKind.VARIABLE,
    MatchType.TYPE_PARAMETER: CompletionItemKind.TYPE_PARAMETER,
    MatchType.BUILTIN: CompletionItemKind.KEYWORD,
    MatchType.ASSOC_TYPE: CompletionItemKind.TYPE_PARAMETER,
}


def source_kind_from_def_kind(kind: DefKind) -> SymbolKind:
    """Convert a definition kind into a protocol symbol kind."""
    return _SYMBOL_KINDS[kind]


def completion_kind_from_match_type(
    match_type: MatchType, alias_of: Optional[MatchType] = None
) -> CompletionItemKind:
    """Return the completion kind for a match type.

    A ``USE_ALIAS`` match takes the kind of the match it aliases, given as ``alias_of``.
    """
    if match_type is MatchType.USE_ALIAS:
        if alias_of is None:
            raise ValueError("A use alias needs the match type it aliases")
        if alias_of is MatchType.USE_ALIAS:
            raise ValueError("Nested use aliases")
        return _COMPLETION_KINDS[alias_of]
    return _COMPLETION_KINDS[match_type]


def _lookup(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


@dataclass(frozen=True)
class ClientCapabilities:
    """The client capability flags that affect the server."""

    code_completion_has_snippet_support: bool = False
    related_information_support: bool = False

    @classmethod
    def from_initialize_params(cls, params: dict) -> "ClientCapabilities":
        """Pick the relevant flags out of ``initialize`` request params."""
        text_document = _lookup(params, "capabilities", "textDocument")
        snippets = _lookup(text_document, "completion", "completionItem", "snippetSupport")
        related = _lookup(text_document, "publishDiagnostics", "relatedInformation")
        return cls(
            code_completion_has_snippet_support=snippets is True,
            related_information_support=related is True,
        )


@dataclass
class InitializationOptions:
    """Server-specific options passed under ``initializationOptions``.

    ``settings`` holds the ``rust`` configuration object when one was given;
    top-level settings keys other than ``rust`` are listed in ``unknown_settings``.
    """

    omit_init_build: bool = False
    cmd_run: bool = False
    settings: Optional[dict] = None
    unknown_settings: list = field(default_factory=list)

    @classmethod
    def from_json(cls, value: Any) -> "InitializationOptions":
        """Build options from decoded JSON; raise ``ValueError`` if it is malformed."""
        if not isinstance(value, dict):
            raise ValueError("initialization options must be an object")

        unknowns: list = []
        settings = _settings_from_json(value.get("settings"), unknowns)

        flags = {}
        for key, attr in (("omitInitBuild", "omit_init_build"), ("cmdRun", "cmd_run")):
            if key in value:
                if not isinstance(value[key], bool):
                    raise ValueError(f"`{key}` must be a boolean")
                flags[attr] = value[key]
        return cls(settings=settings, unknown_settings=unknowns, **flags)


def _settings_from_json(value: Any, unknowns: list) -> Optional[dict]:
    if not isinstance(value, dict):
        return None
    result = None
    for key in sorted(value):
        if key != "rust":
            unknowns.append(key)
            continue
        if not isinstance(value[key], dict):
            return None
        result = value[key]
    return result