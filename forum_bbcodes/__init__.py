import os
from pathlib import Path
from typing import Any, Mapping, Optional

from flask import Flask

from .datastore import BBCODE_LIMIT, NUM_CORE_BBCODES, DataStore
from .installer import BBCodesInstaller
from .regexp import BBCodeRegexp, RegexBuilder


__all__ = ["BBCodeRegexp", "BBCodesInstaller", "DataStore", "RegexBuilder", "create_app"]


def create_app(
    config: Optional[Mapping[str, Any]] = None,
    regex_builder: Optional[RegexBuilder] = None,
) -> Flask:
    app = Flask(__name__)

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-key")
    app.config["BBCODES_DATA_PATH"] = os.getenv(
        "BBCODES_DATA_PATH", str(Path(app.root_path).parent / "data")
    )
    app.config["NUM_CORE_BBCODES"] = int(os.getenv("NUM_CORE_BBCODES", NUM_CORE_BBCODES))
    app.config["BBCODE_LIMIT"] = int(os.getenv("BBCODE_LIMIT", BBCODE_LIMIT))
    app.config["ADMIN_TOKEN"] = os.getenv("ADMIN_TOKEN")
    if config:
        app.config.update(config)

    datastore = DataStore(Path(app.config["BBCODES_DATA_PATH"]))
    app.extensions["datastore"] = datastore
    app.extensions["bbcodes_installer"] = BBCodesInstaller(
        datastore,
        regex_builder,
        core_bbcodes=app.config["NUM_CORE_BBCODES"],
        bbcode_limit=app.config["BBCODE_LIMIT"],
    )

    from .admin import bp as admin_bp
    from .cli import bbcodes_cli

    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.cli.add_command(bbcodes_cli)

    return app
