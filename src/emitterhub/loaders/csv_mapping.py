"""
Mapping CSV loader.

One rule per row, ';'-delimited:

    entityStart;entityEnd;targetIP;universeStart;universeEnd;channelMode;startChannel

A header row is tolerated. Malformed rows are logged and skipped; the
remaining rows still load.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Union

import structlog

from emitterhub.core.exceptions import ConfigError, EmitterHubError

logger = structlog.get_logger()

MAPPING_COLUMNS = 7


class RangeTarget(Protocol):
    def add_entity_range(
        self,
        entity_start: int,
        entity_end: int,
        ip: str,
        universe_start: int,
        universe_end: int,
        channel_mode: str = "RGB",
        start_channel: int = 1,
    ) -> int: ...


@dataclass
class LoadReport:
    """Outcome of a CSV load."""

    loaded: int = 0
    skipped: int = 0
    entities: int = 0
    errors: list[str] = field(default_factory=list)


def _is_header(row: list[str]) -> bool:
    try:
        int(row[0].strip())
    except (ValueError, IndexError):
        return True
    return False


def load_mapping_csv(path: Union[str, Path], target: RangeTarget) -> LoadReport:
    """Register every valid row of a mapping CSV on target (a mapper or router)."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Mapping CSV not found: {path}")

    logger.info("Loading mapping", path=str(path))
    report = LoadReport()

    with open(path, newline="", encoding="utf-8-sig") as f:
        for line_no, row in enumerate(csv.reader(f, delimiter=";"), start=1):
            if not row or all(not cell.strip() for cell in row):
                continue
            if line_no == 1 and _is_header(row):
                continue

            if len(row) < MAPPING_COLUMNS:
                report.skipped += 1
                report.errors.append(f"line {line_no}: expected {MAPPING_COLUMNS} columns")
                logger.warning("Mapping row skipped", line=line_no, reason="missing columns")
                continue

            try:
                entity_start = int(row[0])
                entity_end = int(row[1])
                ip = row[2].strip()
                universe_start = int(row[3])
                universe_end = int(row[4])
                channel_mode = row[5].strip().upper()
                start_channel = int(row[6])
                if not ip:
                    raise ValueError("empty target IP")

                count = target.add_entity_range(
                    entity_start,
                    entity_end,
                    ip,
                    universe_start,
                    universe_end,
                    channel_mode,
                    start_channel,
                )
            except (ValueError, EmitterHubError) as e:
                report.skipped += 1
                report.errors.append(f"line {line_no}: {e}")
                logger.warning("Mapping row skipped", line=line_no, reason=str(e))
                continue

            report.loaded += 1
            report.entities += count
            logger.debug(
                "Mapping row loaded",
                line=line_no,
                entities=f"{entity_start}-{entity_end}",
                ip=ip,
                universes=f"{universe_start}-{universe_end}",
            )

    logger.info(
        "Mapping loaded",
        rows=report.loaded,
        skipped=report.skipped,
        entities=report.entities,
    )
    return report
