"""Version ordering for deployed-vs-released comparison.

Both sides are parsed as PEP 440 versions after stripping a leading ``v``, so
pre-releases (``1.0.0-rc1``, ``2.0.0-beta``) order before their final
release. Strings that do not parse are reported as non-comparable rather than
guessed at.
"""
from __future__ import annotations

from packaging.version import InvalidVersion, Version

from .status import FAILURE_PREFIXES, Comparison, Reading


def normalize(version: str) -> str:
    version = version.strip()
    return version[1:] if version.startswith("v") else version


def is_failure_token(raw: str) -> bool:
    return raw.strip().startswith(FAILURE_PREFIXES)


def parse_version(raw: str) -> Version | None:
    try:
        return Version(normalize(raw))
    except InvalidVersion:
        return None


def _raw(value: str | Reading) -> str | None:
    if isinstance(value, Reading):
        return value.value if value.ok else None
    return value


def compare(deployed: str | Reading, reference: str | Reading) -> Comparison:
    """Classify ``deployed`` relative to ``reference``.

    Failure tokens (TIMEOUT_SVC, ERR_*, HTTP_*, NO_RELEASES, N/A) and failed
    readings are never interpreted as versions.
    """
    d_raw, r_raw = _raw(deployed), _raw(reference)
    if d_raw is None or r_raw is None:
        return Comparison.NON_COMPARABLE
    if is_failure_token(d_raw) or is_failure_token(r_raw):
        return Comparison.NON_COMPARABLE

    if normalize(d_raw) == normalize(r_raw):
        return Comparison.EQUAL
    d, r = parse_version(d_raw), parse_version(r_raw)
    if d is None or r is None:
        return Comparison.NON_COMPARABLE

    # Different strings that parse equal (e.g. "1.01" vs "1.1") have no lesser element.
    if d < r:
        return Comparison.BEHIND
    if d > r:
        return Comparison.AHEAD
    return Comparison.NON_COMPARABLE
