"""Semantic version parsing and range matching.

Ranges follow the npm grammar client SDKs use for ``appVersion`` targets:
exact versions, comparators, ``^``/``~``, x-ranges, hyphen ranges,
space-separated conjunctions and ``||`` disjunctions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_NUM = r"0|[1-9]\d*"
_XR = rf"(?:{_NUM}|[xX*])"
_PRERELEASE = r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
_BUILD = r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"

VERSION_RE = re.compile(rf"^v?=?\s*({_NUM})(?:\.({_NUM})(?:\.({_NUM}){_PRERELEASE}{_BUILD})?)?$")
PARTIAL_RE = re.compile(rf"^v?({_XR})(?:\.({_XR})(?:\.({_XR}){_PRERELEASE}{_BUILD})?)?$")
_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")
_OPERATOR_SPACE_RE = re.compile(r"(<=|>=|<|>|=|~|\^)\s+")
_PRIMITIVE_RE = re.compile(r"^(<=|>=|<|>|=)?(.+)$")


@dataclass(frozen=True, order=False)
class Version:
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    def sort_key(self) -> tuple:
        if not self.prerelease:
            pre: tuple = (1,)
        else:
            pre = (0, tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in self.prerelease))
        return (self.major, self.minor, self.patch, pre)

    def __lt__(self, other: Version) -> bool:
        return self.sort_key() < other.sort_key()

    def __le__(self, other: Version) -> bool:
        return self.sort_key() <= other.sort_key()

    def __gt__(self, other: Version) -> bool:
        return self.sort_key() > other.sort_key()

    def __ge__(self, other: Version) -> bool:
        return self.sort_key() >= other.sort_key()

    def __str__(self) -> str:
        core = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            return f"{core}-{'.'.join(self.prerelease)}"
        return core


def _lowest(major: int, minor: int, patch: int) -> Version:
    return Version(major, minor, patch, ("0",))


def parse_version(value: str | None) -> Version | None:
    """Parse a concrete version; missing minor/patch default to zero."""
    raw = str(value or "").strip()
    match = VERSION_RE.match(raw)
    if not match:
        return None
    major, minor, patch, pre = match.groups()
    prerelease = tuple(pre.split(".")) if pre else ()
    return Version(int(major), int(minor or 0), int(patch or 0), prerelease)


def is_valid_version(value: str | None) -> bool:
    return parse_version(value) is not None


@dataclass(frozen=True)
class _Partial:
    major: int | None
    minor: int | None
    patch: int | None
    prerelease: tuple[str, ...] = ()


def _parse_partial(token: str) -> _Partial:
    match = PARTIAL_RE.match(token)
    if not match:
        raise ValueError(f"Invalid version token: {token!r}")
    parts = []
    wildcard = False
    for group in match.groups()[:3]:
        if group is None or group in ("x", "X", "*") or wildcard:
            wildcard = True
            parts.append(None)
        else:
            parts.append(int(group))
    pre = match.group(4)
    return _Partial(parts[0], parts[1], parts[2], tuple(pre.split(".")) if pre and not wildcard else ())


Comparator = tuple[str, Version]


def _xrange(p: _Partial) -> list[Comparator]:
    if p.major is None:
        return [(">=", Version(0, 0, 0))]
    if p.minor is None:
        return [(">=", Version(p.major, 0, 0)), ("<", _lowest(p.major + 1, 0, 0))]
    if p.patch is None:
        return [(">=", Version(p.major, p.minor, 0)), ("<", _lowest(p.major, p.minor + 1, 0))]
    return [("=", Version(p.major, p.minor, p.patch, p.prerelease))]


def _tilde(p: _Partial) -> list[Comparator]:
    if p.major is None:
        return [(">=", Version(0, 0, 0))]
    if p.minor is None:
        return [(">=", Version(p.major, 0, 0)), ("<", _lowest(p.major + 1, 0, 0))]
    patch = p.patch or 0
    return [
        (">=", Version(p.major, p.minor, patch, p.prerelease)),
        ("<", _lowest(p.major, p.minor + 1, 0)),
    ]


def _caret(p: _Partial) -> list[Comparator]:
    if p.major is None:
        return [(">=", Version(0, 0, 0))]
    if p.minor is None:
        return [(">=", Version(p.major, 0, 0)), ("<", _lowest(p.major + 1, 0, 0))]
    if p.patch is None:
        if p.major == 0:
            return [(">=", Version(0, p.minor, 0)), ("<", _lowest(0, p.minor + 1, 0))]
        return [(">=", Version(p.major, p.minor, 0)), ("<", _lowest(p.major + 1, 0, 0))]
    low = Version(p.major, p.minor, p.patch, p.prerelease)
    if p.major > 0:
        high = _lowest(p.major + 1, 0, 0)
    elif p.minor > 0:
        high = _lowest(0, p.minor + 1, 0)
    else:
        high = _lowest(0, 0, p.patch + 1)
    return [(">=", low), ("<", high)]


def _primitive(op: str, p: _Partial) -> list[Comparator]:
    if op == "=" or (p.major is None and op in (">=", "<=")):
        return _xrange(p)
    if p.major is None:
        # ">*" and "<*" match nothing
        return [("<", Version(0, 0, 0, ("0",)))]
    if p.minor is None or p.patch is None:
        if op == ">":
            if p.minor is None:
                return [(">=", Version(p.major + 1, 0, 0))]
            return [(">=", Version(p.major, p.minor + 1, 0))]
        if op == ">=":
            return [(">=", Version(p.major, p.minor or 0, 0))]
        if op == "<":
            return [("<", _lowest(p.major, p.minor or 0, 0))]
        # "<="
        if p.minor is None:
            return [("<", _lowest(p.major + 1, 0, 0))]
        return [("<", _lowest(p.major, p.minor + 1, 0))]
    return [(op, Version(p.major, p.minor, p.patch, p.prerelease))]


def _hyphen(low: _Partial, high: _Partial) -> list[Comparator]:
    comparators: list[Comparator] = []
    if low.major is not None:
        comparators.append((">=", Version(low.major, low.minor or 0, low.patch or 0, low.prerelease)))
    if high.major is None:
        pass
    elif high.minor is None:
        comparators.append(("<", _lowest(high.major + 1, 0, 0)))
    elif high.patch is None:
        comparators.append(("<", _lowest(high.major, high.minor + 1, 0)))
    else:
        comparators.append(("<=", Version(high.major, high.minor, high.patch, high.prerelease)))
    return comparators or [(">=", Version(0, 0, 0))]


def _parse_simple(token: str) -> list[Comparator]:
    if token.startswith("^"):
        return _caret(_parse_partial(token[1:]))
    if token.startswith("~"):
        body = token[1:]
        if body.startswith(">"):
            body = body[1:]
        return _tilde(_parse_partial(body))
    match = _PRIMITIVE_RE.match(token)
    op, body = match.groups() if match else (None, token)
    if op:
        return _primitive(op, _parse_partial(body))
    return _xrange(_parse_partial(body))


def parse_range(value: str) -> list[list[Comparator]]:
    """Parse a range expression into a disjunction of comparator sets."""
    raw = str(value or "").strip()
    if not raw:
        raise ValueError("Empty version range")
    alternatives: list[list[Comparator]] = []
    for part in raw.split("||"):
        part = part.strip()
        if not part:
            raise ValueError(f"Invalid version range: {value!r}")
        hyphen = _HYPHEN_RE.match(part)
        if hyphen:
            alternatives.append(_hyphen(_parse_partial(hyphen.group(1)), _parse_partial(hyphen.group(2))))
            continue
        comparators: list[Comparator] = []
        for token in _OPERATOR_SPACE_RE.sub(r"\1", part).split():
            comparators.extend(_parse_simple(token))
        alternatives.append(comparators)
    return alternatives


def is_valid_range(value: str | None) -> bool:
    try:
        parse_range(value or "")
    except ValueError:
        return False
    return True


def _test(op: str, version: Version, bound: Version) -> bool:
    if op == "=":
        return version.sort_key() == bound.sort_key()
    if op == ">":
        return version > bound
    if op == ">=":
        return version >= bound
    if op == "<":
        return version < bound
    return version <= bound


def _admits_prerelease(version: Version, comparators: list[Comparator]) -> bool:
    # A pre-release only matches when some comparator pins the same
    # major.minor.patch with a pre-release of its own. "-0" marks the
    # synthetic upper bounds built by the desugaring above.
    for _, bound in comparators:
        if not bound.prerelease or bound.prerelease == ("0",):
            continue
        if (bound.major, bound.minor, bound.patch) == (version.major, version.minor, version.patch):
            return True
    return False


def satisfies(version: str | Version, version_range: str) -> bool:
    """Whether ``version`` falls inside ``version_range``.

    Raises ``ValueError`` when either side is malformed.
    """
    parsed = version if isinstance(version, Version) else parse_version(version)
    if parsed is None:
        raise ValueError(f"Invalid version: {version!r}")
    for comparators in parse_range(version_range):
        if not all(_test(op, parsed, bound) for op, bound in comparators):
            continue
        if parsed.prerelease and not _admits_prerelease(parsed, comparators):
            continue
        return True
    return False
