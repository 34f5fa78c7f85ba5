"""DTC code sources and describers.

Validates and loads fault codes for the fault injector, and resolves
codes to human-readable titles for log output. Descriptions never
affect simulation state; a missing title is not an error.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from trip_sim.dtc_database import get_dtc_entry

logger = logging.getLogger(__name__)

INFO_URL_TEMPLATE = "https://club.autodoc.se/obd-codes/{code}"

DTC_PATTERN = re.compile(r"^[PBCU]\d{4}$", re.IGNORECASE)
_CODE_IN_LINE = re.compile(r"\b([PBCU]\d{4})\b", re.IGNORECASE)
_DESCRIPTION_LINE = re.compile(
    r"^\s*(?P<code>[PBCU]\d{4})\s*(?:[,;\t]\s*(?P<desc>.+))?$", re.IGNORECASE,
)
_COMMENT_PREFIX = "#"

_SYSTEMS = {"P": "Powertrain", "B": "Body", "C": "Chassis", "U": "Network"}
_SUBSYSTEMS = {
    "0": "Fuel and Air Metering",
    "1": "Fuel and Air Metering",
    "2": "Fuel and Air Metering (Injector Circuit)",
    "3": "Ignition System or Misfire",
    "4": "Auxiliary Emission Controls",
    "5": "Vehicle Speed and Idle Control",
    "6": "Computer Output Circuit",
    "7": "Transmission",
    "8": "Transmission",
}


class DtcInfo(BaseModel):
    """Human-readable information about a DTC code.

    Attributes:
        code: Upper-cased DTC code.
        title: Short description, if one is known.
        url: Reference page for the code.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    title: str | None = None
    url: str


class CodeDescriber(Protocol):
    """Resolves a DTC code to human-readable information."""

    def describe(self, code: str) -> DtcInfo | None:
        """Return information for ``code``, or ``None`` if unknown."""
        ...


def is_valid_code(code: str) -> bool:
    """Whether ``code`` is a letter from PBCU followed by four digits."""
    return bool(DTC_PATTERN.match(code.strip()))


def filter_valid_codes(codes: Iterable[str]) -> list[str]:
    """Drop malformed codes, upper-case and deduplicate, keeping order."""
    seen: dict[str, None] = {}
    for raw in codes:
        code = raw.strip().upper()
        if is_valid_code(code):
            seen.setdefault(code, None)
        else:
            logger.debug("Ignoring malformed DTC code: %r", raw)
    return list(seen)


def build_info_url(code: str) -> str:
    """Reference page URL for a code."""
    return INFO_URL_TEMPLATE.format(code=code.strip().lower())


def _content_lines(path: Path) -> Iterable[str]:
    with path.open(encoding="utf-8") as handle:
        for raw in handle:
            line = raw.strip()
            if line and not line.startswith(_COMMENT_PREFIX):
                yield line


def load_codes_csv(path: str | Path) -> list[str]:
    """Load the primary code source from a text/CSV file.

    The first code-shaped token of each line is taken; blank lines and
    ``#`` comments are skipped. A missing file yields an empty list.

    Args:
        path: File to read.

    Returns:
        Ordered, deduplicated, upper-cased codes.
    """
    path = Path(path)
    if not path.is_file():
        logger.warning("DTC code file not found: %s", path)
        return []

    found = []
    for line in _content_lines(path):
        match = _CODE_IN_LINE.search(line)
        if match:
            found.append(match.group(1))
    codes = filter_valid_codes(found)
    logger.info("Loaded %d DTC codes from %s", len(codes), path)
    return codes


class CsvDescriber:
    """Describes codes from a ``CODE,description`` file.

    ``;`` and tab separators are accepted as well. Lines without a
    description are ignored.
    """

    def __init__(self, path: str | Path) -> None:
        self._titles = self._load(Path(path))

    @staticmethod
    def _load(path: Path) -> dict[str, str]:
        titles: dict[str, str] = {}
        if not path.is_file():
            logger.warning("DTC description file not found: %s", path)
            return titles
        for line in _content_lines(path):
            match = _DESCRIPTION_LINE.match(line)
            if match and match.group("desc"):
                titles[match.group("code").upper()] = match.group("desc").strip()
        logger.info("Loaded %d DTC descriptions from %s", len(titles), path)
        return titles

    def describe(self, code: str) -> DtcInfo | None:
        key = code.strip().upper()
        title = self._titles.get(key)
        if title is None:
            return None
        return DtcInfo(code=key, title=title, url=build_info_url(key))


class DatabaseDescriber:
    """Describes codes from the built-in reference table."""

    def describe(self, code: str) -> DtcInfo | None:
        entry = get_dtc_entry(code)
        if entry is None:
            return None
        return DtcInfo(
            code=entry.code,
            title=f"{entry.description} [{entry.system}, {entry.severity}]",
            url=build_info_url(entry.code),
        )


class HeuristicDescriber:
    """Derives a generic title from the structure of a code.

    The letter gives the system, the first digit tells SAE generic from
    manufacturer-specific codes, and the second digit the subsystem.
    """

    def describe(self, code: str) -> DtcInfo | None:
        key = code.strip().upper()
        if not is_valid_code(key):
            return None

        system = _SYSTEMS[key[0]]
        if key[1] == "0":
            genericity = "SAE generic"
        elif key[1] in "123":
            genericity = "manufacturer-specific"
        else:
            genericity = "unspecified"
        subsystem = _SUBSYSTEMS.get(key[2], "Subsystem")

        return DtcInfo(
            code=key,
            title=f"{system} - {subsystem} ({genericity})",
            url=build_info_url(key),
        )


class ChainDescriber:
    """Tries describers in order; the first hit wins.

    When no describer knows the code, a title-less ``DtcInfo`` carrying
    only the reference URL is returned. Errors raised by a describer
    are logged and the next one is tried.
    """

    def __init__(self, *describers: CodeDescriber) -> None:
        self._describers = describers

    def describe(self, code: str) -> DtcInfo:
        key = code.strip().upper()
        for describer in self._describers:
            try:
                info = describer.describe(key)
            except Exception as exc:
                logger.warning(
                    "%s failed for %s: %s", type(describer).__name__, key, exc,
                )
                continue
            if info is not None:
                logger.debug("Info for %s from %s", key, type(describer).__name__)
                return info
        logger.debug("No description for %s, using reference URL only", key)
        return DtcInfo(code=key, title=None, url=build_info_url(key))


def build_describer(descriptions_csv: str | Path | None = None) -> ChainDescriber:
    """Assemble the standard describer chain.

    Args:
        descriptions_csv: Optional description file consulted first.

    Returns:
        Chain of CSV (when given), built-in table and heuristic describers.
    """
    describers: list[CodeDescriber] = []
    if descriptions_csv is not None:
        describers.append(CsvDescriber(descriptions_csv))
    describers.append(DatabaseDescriber())
    describers.append(HeuristicDescriber())
    return ChainDescriber(*describers)
