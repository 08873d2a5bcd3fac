from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from flask import current_app
from flask.cli import AppGroup

from .datastore import DataStore
from .installer import BBCodesInstaller
from .migrations import MENTION_BBCODES, load_bbcode_definitions


bbcodes_cli = AppGroup("bbcodes", help="管理自定义 BBCode。")


def _installer() -> BBCodesInstaller:
    return current_app.extensions["bbcodes_installer"]


def _datastore() -> DataStore:
    return current_app.extensions["datastore"]


@bbcodes_cli.command("install")
@click.argument("definitions", required=False, type=click.Path(exists=True, dir_okay=False, path_type=Path))
def install_command(definitions: Optional[Path]) -> None:
    """Install BBCodes from a JSON file, or the bundled [mention] code."""
    installer = _installer()
    if installer.regex_builder is None:
        raise click.UsageError("未配置 BBCode 正则构建器，无法安装 BBCode")

    if definitions is None:
        bbcodes = MENTION_BBCODES
    else:
        try:
            bbcodes = load_bbcode_definitions(definitions)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="DEFINITIONS") from exc

    try:
        installer.install_bbcodes(bbcodes)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"已处理 {len(bbcodes)} 个 BBCode，当前共 {_datastore().count_bbcodes()} 个")


@bbcodes_cli.command("resync")
def resync_command() -> None:
    """Renumber the display order of all custom BBCodes."""
    _installer().resynchronize_bbcode_order()
    click.echo(f"已重新排序 {_datastore().count_bbcodes()} 个 BBCode")


@bbcodes_cli.command("list")
def list_command() -> None:
    """Print custom BBCodes in display order."""
    bbcodes = _datastore().list_bbcodes()
    if not bbcodes:
        click.echo("暂无自定义 BBCode")
        return
    for bbcode in bbcodes:
        shown = "显示" if bbcode["display_on_posting"] else "隐藏"
        click.echo(f"{bbcode['bbcode_order']:>4}  #{bbcode['bbcode_id']:<5} [{bbcode['bbcode_tag']}]  {shown}")
