from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from .installer import BBCodesInstaller


MENTION_BBCODES: Dict[str, Dict[str, Any]] = {
    "mention": {
        "display_on_posting": 0,
        "bbcode_helpline": "",
        "bbcode_match": "[mention={INTTEXT}]{SIMPLETEXT}[/mention]",
        "bbcode_tpl": '<a href="./memberlist.php?mode=viewprofile&amp;u={INTTEXT}" class="mention">@{SIMPLETEXT}</a>',
    },
}


def install_mention_bbcode(installer: BBCodesInstaller) -> None:
    installer.install_bbcodes(MENTION_BBCODES)


def load_bbcode_definitions(path: Path) -> Dict[str, Dict[str, Any]]:
    """Read a JSON object mapping BBCode names to their definitions."""
    with Path(path).open(encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError("BBCode 定义文件的顶层必须是对象")
    for name, data in payload.items():
        if not isinstance(data, dict):
            raise ValueError(f"BBCode {name!r} 的定义必须是对象")
    return payload
