from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from .datastore import BBCODE_COLUMNS, BBCODE_LIMIT, NUM_CORE_BBCODES, DataStore
from .regexp import RegexBuilder


__all__ = ["BBCodesInstaller"]


logger = logging.getLogger(__name__)

_WRITABLE_COLUMNS = frozenset(BBCODE_COLUMNS) - {"bbcode_id"}


class BBCodesInstaller:
    """Adds or updates custom BBCodes, used by migrations.

    Existing codes are matched case-insensitively on either the name they are
    installed under or the tag the regex builder derives, and are updated in
    place. New codes get the next free id above the core BBCodes; once that id
    would pass ``bbcode_limit`` the code is not inserted.
    """

    def __init__(
        self,
        datastore: DataStore,
        regex_builder: Optional[RegexBuilder] = None,
        *,
        core_bbcodes: int = NUM_CORE_BBCODES,
        bbcode_limit: int = BBCODE_LIMIT,
    ):
        self.datastore = datastore
        self.regex_builder = regex_builder
        self.core_bbcodes = int(core_bbcodes)
        self.bbcode_limit = int(bbcode_limit)

    def install_bbcodes(self, bbcodes: Mapping[str, Mapping[str, Any]]) -> None:
        self._require_builder()
        # Reject the whole batch before any row is written.
        for bbcode_data in bbcodes.values():
            self.validate_bbcode_data(bbcode_data)

        for bbcode_name, bbcode_data in bbcodes.items():
            data = self.build_bbcode(bbcode_data)

            existing = self.bbcode_exists(bbcode_name, data["bbcode_tag"])
            if existing is not None:
                self.update_bbcode(existing, data)
            else:
                self.add_bbcode(data)

        self.resynchronize_bbcode_order()

    def resynchronize_bbcode_order(self) -> None:
        """Rewrite ``bbcode_order`` as 1..N following the current order, then id."""
        datastore = self.datastore
        with datastore.transaction():
            cursor = datastore.query(
                "SELECT bbcode_id, bbcode_order FROM bbcodes ORDER BY bbcode_order, bbcode_id"
            )
            # Updates go through a second cursor, so the result is read up front.
            rows = cursor.fetchall()
            datastore.free_result(cursor)

            order = 0
            for row in rows:
                order += 1
                if row["bbcode_order"] != order:
                    logger.debug("BBCode %s 的排序由 %s 调整为 %s", row["bbcode_id"], row["bbcode_order"], order)
                    datastore.query(
                        "UPDATE bbcodes SET bbcode_order = ? WHERE bbcode_id = ?",
                        (order, int(row["bbcode_id"])),
                    )

    def _require_builder(self) -> RegexBuilder:
        if self.regex_builder is None:
            raise RuntimeError("未配置 BBCode 正则构建器，无法安装 BBCode")
        return self.regex_builder

    @staticmethod
    def validate_bbcode_data(bbcode_data: Mapping[str, Any]) -> None:
        unknown = set(bbcode_data) - _WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"未知的 BBCode 字段：{', '.join(sorted(unknown))}")
        for required in ("bbcode_match", "bbcode_tpl"):
            value = bbcode_data.get(required)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"缺少必填字段：{required}")
        if "display_on_posting" in bbcode_data:
            flag = bbcode_data["display_on_posting"]
            if isinstance(flag, bool):
                return
            if not isinstance(flag, int) or flag not in (0, 1):
                raise ValueError("display_on_posting 只能是 0 或 1")

    def build_bbcode(self, bbcode_data: Mapping[str, Any]) -> Dict[str, Any]:
        regex_builder = self._require_builder()
        self.validate_bbcode_data(bbcode_data)

        regexp = regex_builder.build_regexp(bbcode_data["bbcode_match"], bbcode_data["bbcode_tpl"])
        data = dict(bbcode_data)
        for key, value in regexp.as_fields().items():
            data.setdefault(key, value)
        return data

    def get_max_bbcode_id(self) -> int:
        return self._get_max_column_value("bbcode_id")

    def _get_max_column_value(self, column: str) -> int:
        cursor = self.datastore.query(f"SELECT MAX({column}) AS max_value FROM bbcodes")
        row = self.datastore.fetchrow(cursor)
        self.datastore.free_result(cursor)
        if row is None or row["max_value"] is None:
            return 0
        return int(row["max_value"])

    def bbcode_exists(self, bbcode_name: str, bbcode_tag: str) -> Optional[Dict[str, Any]]:
        cursor = self.datastore.query(
            "SELECT bbcode_id FROM bbcodes WHERE LOWER(bbcode_tag) = ? OR LOWER(bbcode_tag) = ? ORDER BY bbcode_id",
            (bbcode_name.lower(), bbcode_tag.lower()),
        )
        row = self.datastore.fetchrow(cursor)
        self.datastore.free_result(cursor)
        return dict(row) if row else None

    def update_bbcode(self, old_bbcode: Mapping[str, Any], new_bbcode: Mapping[str, Any]) -> None:
        fields, params = self.datastore.build_array("UPDATE", new_bbcode)
        self.datastore.query(
            f"UPDATE bbcodes SET {fields} WHERE bbcode_id = ?",
            [*params, int(old_bbcode["bbcode_id"])],
        )
        logger.info("已更新 BBCode [%s]（id=%s）", new_bbcode["bbcode_tag"], old_bbcode["bbcode_id"])

    def add_bbcode(self, bbcode_data: Mapping[str, Any]) -> None:
        bbcode_id = self.get_max_bbcode_id() + 1

        if bbcode_id <= self.core_bbcodes:
            bbcode_id = self.core_bbcodes + 1

        if bbcode_id > self.bbcode_limit:
            logger.warning(
                "BBCode [%s] 未安装：编号 %s 超出上限 %s",
                bbcode_data.get("bbcode_tag"),
                bbcode_id,
                self.bbcode_limit,
            )
            return

        data = dict(bbcode_data)
        data["bbcode_id"] = bbcode_id
        # Shown on the posting page unless the definition says otherwise.
        data["display_on_posting"] = int(data.get("display_on_posting", 1))

        fields, params = self.datastore.build_array("INSERT", data)
        self.datastore.query(f"INSERT INTO bbcodes {fields}", params)
        logger.info("已添加 BBCode [%s]（id=%s）", data["bbcode_tag"], bbcode_id)
