from __future__ import annotations

import re
from pathlib import Path
from typing import List, Tuple

import pytest

from forum_bbcodes import create_app
from forum_bbcodes.datastore import DataStore
from forum_bbcodes.installer import BBCodesInstaller
from forum_bbcodes.regexp import BBCodeRegexp


_TAG_RE = re.compile(r"^\[([A-Za-z0-9_*-]+)")


class FakeRegexBuilder:
    """Derives the tag from the opening bracket and echoes the templates."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, str]] = []

    def build_regexp(self, bbcode_match: str, bbcode_tpl: str) -> BBCodeRegexp:
        self.calls.append((bbcode_match, bbcode_tpl))
        match = _TAG_RE.match(bbcode_match)
        tag = match.group(1) if match else bbcode_match
        return BBCodeRegexp(
            bbcode_tag=tag,
            first_pass_match=f"!\\[{tag}\\](.*?)\\[/{tag}\\]!ies",
            first_pass_replace=f"[{tag}:$uid]$1[/{tag}:$uid]",
            second_pass_match=f"!\\[{tag}:$uid\\](.*?)\\[/{tag}:$uid\\]!s",
            second_pass_replace=bbcode_tpl,
        )


@pytest.fixture
def regex_builder() -> FakeRegexBuilder:
    return FakeRegexBuilder()


@pytest.fixture
def datastore(tmp_path: Path):
    store = DataStore(tmp_path / "data")
    yield store
    store.close()


@pytest.fixture
def installer(datastore: DataStore, regex_builder: FakeRegexBuilder) -> BBCodesInstaller:
    return BBCodesInstaller(datastore, regex_builder)


@pytest.fixture
def app(tmp_path: Path, regex_builder: FakeRegexBuilder):
    app = create_app(
        {"TESTING": True, "BBCODES_DATA_PATH": str(tmp_path / "app-data"), "ADMIN_TOKEN": None},
        regex_builder=regex_builder,
    )
    yield app
    app.extensions["datastore"].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def insert_raw(datastore: DataStore):
    """Insert a row directly, bypassing the installer."""

    def _insert(bbcode_id: int, tag: str, order: int = 0) -> None:
        fields, params = datastore.build_array(
            "INSERT",
            {
                "bbcode_id": bbcode_id,
                "bbcode_tag": tag,
                "bbcode_order": order,
                "bbcode_match": f"[{tag}]{{TEXT}}[/{tag}]",
                "bbcode_tpl": "<span>{TEXT}</span>",
            },
        )
        datastore.query(f"INSERT INTO bbcodes {fields}", params)

    return _insert
