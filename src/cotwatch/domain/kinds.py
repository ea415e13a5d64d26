"""
CoT type-code helpers.

A CoT `type` (our `kind`) is a dash-separated hierarchy, e.g. `a-f-G-U-C`:
- atom 0: `a` (atoms: units/tracks), `b` (bits: alerts, sensors), `u` (user drawings), ...
- atom 1 (for `a-`): affiliation (`f` friendly, `h` hostile, `n` neutral, `u` unknown, ...)
- atom 2 (for `a-`): battle dimension (`G` ground, `A` air, `S` sea, ...)
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Literal

Affiliation = Literal[
    "friendly",
    "hostile",
    "neutral",
    "unknown",
    "pending",
    "assumed_friend",
    "suspect",
    "joker",
    "faker",
    "none",
]

BattleDomain = Literal["ground", "air", "sea", "subsurface", "space", "other"]

_AFFILIATIONS: dict[str, Affiliation] = {
    "f": "friendly",
    "h": "hostile",
    "n": "neutral",
    "u": "unknown",
    "p": "pending",
    "a": "assumed_friend",
    "s": "suspect",
    "j": "joker",
    "k": "faker",
}

_DOMAINS: dict[str, BattleDomain] = {
    "G": "ground",
    "A": "air",
    "S": "sea",
    "U": "subsurface",
    "P": "space",
}

_KIND_DESCRIPTIONS: dict[str, str] = {
    "a-f-G": "Friendly Ground",
    "a-f-A": "Friendly Air",
    "a-f-S": "Friendly Sea",
    "a-h-G": "Hostile Ground",
    "a-h-A": "Hostile Air",
    "a-h-S": "Hostile Sea",
    "a-n-G": "Neutral Ground",
    "a-n-A": "Neutral Air",
    "a-n-S": "Neutral Sea",
    "a-u-G": "Unknown Ground",
    "a-u-A": "Unknown Air",
    "a-u-S": "Unknown Sea",
    "b-a-o": "Emergency/Alert",
    "b-m-p": "Sensor Point",
    "u-d-f": "Shape/Drawing",
}


def affiliation_of(kind: str) -> Affiliation:
    atoms = kind.split("-")
    if len(atoms) < 2 or atoms[0] != "a":
        return "none"
    return _AFFILIATIONS.get(atoms[1], "unknown")


def domain_of(kind: str) -> BattleDomain:
    atoms = kind.split("-")
    if len(atoms) < 3 or atoms[0] != "a":
        return "other"
    return _DOMAINS.get(atoms[2], "other")


def kind_prefix(kind: str, depth: int = 3) -> str:
    return "-".join(kind.split("-")[:depth])


def describe_kind(prefix: str) -> str:
    return _KIND_DESCRIPTIONS.get(prefix, prefix)


def kind_matches(kind: str, patterns: Iterable[str]) -> bool:
    """True if `kind` matches any pattern.

    Patterns containing `*`/`?` are glob patterns (`a-h-*`); anything else matches as a
    plain prefix (`a-f` matches `a-f-G-U-C`).
    """
    for pattern in patterns:
        if not pattern:
            continue
        if "*" in pattern or "?" in pattern:
            if fnmatchcase(kind, pattern):
                return True
        elif kind.startswith(pattern):
            return True
    return False
