from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Protocol


__all__ = ["BBCodeRegexp", "RegexBuilder"]


@dataclass(frozen=True)
class BBCodeRegexp:
    """Compiled form of a custom BBCode, as stored next to its templates."""

    bbcode_tag: str
    first_pass_match: str
    first_pass_replace: str
    second_pass_match: str
    second_pass_replace: str

    def as_fields(self) -> Dict[str, str]:
        return asdict(self)


class RegexBuilder(Protocol):
    """Turns a match template and an HTML template into two-pass regex data.

    The forum's admin panel owns the actual compilation; anything exposing
    this method can be handed to the installer.
    """

    def build_regexp(self, bbcode_match: str, bbcode_tpl: str) -> BBCodeRegexp:
        ...
