from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ReadingKind(str, Enum):
    VERSION = "VERSION"

    # reference (release listing) side
    NO_RELEASES = "NO_RELEASES"
    NOT_FOUND = "NOT_FOUND"
    AUTH_ERROR = "AUTH_ERROR"
    CLI_ERROR = "CLI_ERROR"

    # deployed (probe) side
    TIMEOUT = "TIMEOUT"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    HTTP_STATUS = "HTTP_STATUS"
    HTML_RESPONSE = "HTML_RESPONSE"
    PARSE_ERROR = "PARSE_ERROR"

    UNAVAILABLE = "UNAVAILABLE"


REFERENCE_ERRORS = frozenset({ReadingKind.NOT_FOUND, ReadingKind.AUTH_ERROR, ReadingKind.CLI_ERROR, ReadingKind.UNAVAILABLE})

# Labels an operator sees in reports; also the tokens the comparator refuses to parse.
FAILURE_PREFIXES = ("ERR_", "TIMEOUT", "HTTP_", "NO_RELEASES", "N/A")


@dataclass(frozen=True)
class Reading:
    """A version string or a typed failure (VersionOrStatus)."""

    kind: ReadingKind
    value: str | None = None
    code: str | None = None

    @classmethod
    def version(cls, value: str) -> "Reading":
        return cls(ReadingKind.VERSION, value=value)

    @classmethod
    def failure(cls, kind: ReadingKind, code: object | None = None) -> "Reading":
        return cls(kind, code=None if code is None else str(code))

    @property
    def ok(self) -> bool:
        return self.kind is ReadingKind.VERSION

    @property
    def cacheable(self) -> bool:
        """Only concrete tags and an explicit no-releases answer may be persisted."""
        return self.kind in {ReadingKind.VERSION, ReadingKind.NO_RELEASES}

    @property
    def label(self) -> str:
        k = self.kind
        if k is ReadingKind.VERSION:
            return self.value or ""
        if k is ReadingKind.NO_RELEASES:
            return "NO_RELEASES"
        if k is ReadingKind.NOT_FOUND:
            return "ERR_GH_NOT_FOUND"
        if k is ReadingKind.AUTH_ERROR:
            return "ERR_GH_AUTH"
        if k is ReadingKind.CLI_ERROR:
            return f"ERR_GH_CLI({self.code})"
        if k is ReadingKind.TIMEOUT:
            return "TIMEOUT_SVC"
        if k is ReadingKind.TRANSPORT_ERROR:
            return f"ERR_SVC_TRANSPORT({self.code})"
        if k is ReadingKind.HTTP_STATUS:
            return f"HTTP_{self.code}"
        if k is ReadingKind.HTML_RESPONSE:
            return "ERR_SVC_HTML_RESP"
        if k is ReadingKind.PARSE_ERROR:
            return "ERR_SVC_PARSE"
        return "N/A"

    def __str__(self) -> str:
        return self.label


class Comparison(str, Enum):
    EQUAL = "EQUAL"
    AHEAD = "AHEAD"
    BEHIND = "BEHIND"
    NON_COMPARABLE = "NON_COMPARABLE"


class OverallStatus(str, Enum):
    GH_ERROR = "GH_ERROR"
    SVC_ERROR = "SVC_ERROR"
    AHEAD = "AHEAD"
    OUTDATED = "OUTDATED"
    NO_RELEASES = "NO_RELEASES"
    UP_TO_DATE = "UP_TO_DATE"
    UNKNOWN_CMP = "UNKNOWN_CMP"


# Most actionable first.
SEVERITY: dict[OverallStatus, int] = {s: i for i, s in enumerate(OverallStatus)}
