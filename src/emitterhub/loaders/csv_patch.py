"""
Patch CSV loader.

Rows are ``srcUniverse;srcChannel;dstUniverse;dstChannel``; a header row
naming those columns is detected and skipped. Any bad row rejects the
whole file so a live patch is never partially replaced.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Union

import structlog

from emitterhub.core.exceptions import ConfigError, PatchRuleError
from emitterhub.dmx.patch import PatchRule

logger = structlog.get_logger()

HEADER_KEYWORDS = ("srcuniverse", "srcchannel", "dstuniverse", "dstchannel")


def _is_header(row: list[str]) -> bool:
    joined = ";".join(row).lower().replace(" ", "").replace("_", "")
    return any(keyword in joined for keyword in HEADER_KEYWORDS)


def load_patch_csv(path: Union[str, Path]) -> list[PatchRule]:
    """Parse and validate every rule of a patch CSV."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Patch CSV not found: {path}")

    rules: list[PatchRule] = []
    with open(path, newline="", encoding="utf-8-sig") as f:
        for line_no, row in enumerate(csv.reader(f, delimiter=";"), start=1):
            if not row or all(not cell.strip() for cell in row):
                continue
            if line_no == 1 and _is_header(row):
                continue

            text = ";".join(row)
            if len(row) < 4:
                raise PatchRuleError(
                    text,
                    "expected 4 columns (srcUniverse;srcChannel;dstUniverse;dstChannel)",
                    line=line_no,
                )
            try:
                src_universe, src_channel, dst_universe, dst_channel = (
                    int(cell) for cell in row[:4]
                )
            except ValueError as e:
                raise PatchRuleError(text, str(e), line=line_no) from e

            try:
                rules.append(PatchRule(src_universe, src_channel, dst_universe, dst_channel))
            except PatchRuleError as e:
                raise PatchRuleError(text, e.message, line=line_no) from e

    logger.info("Patch file parsed", path=str(path), rules=len(rules))
    return rules
