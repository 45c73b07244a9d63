from __future__ import annotations

import csv
import io
import logging
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)


class CSVParseError(Exception):
    pass


COLUMN_ALIASES: Dict[str, str] = {
    "item id": "itemId",
    "itemid": "itemId",
    "id": "itemId",
    "name": "name",
    "title": "name",
    "type": "type",
    "tags": "tags",
    "tagline": "tagline",
    "sort name": "sortName",
    "sortname": "sortName",
    "premiere date": "premiereDate",
    "premieredate": "premiereDate",
    "release date": "premiereDate",
    "production year": "productionYear",
    "productionyear": "productionYear",
    "year": "productionYear",
}


def parse_import_csv(csv_text: str = "", csv_bytes: Optional[bytes] = None) -> List[Dict[str, Any]]:
    """
    Read an import CSV into raw item dicts keyed like the JSON export.

    Empty cells are left out so that a blank column never clears a field.
    """
    raw_csv = _resolve_csv_payload(csv_text, csv_bytes)
    dataframe = _read_frame(raw_csv)

    if dataframe.empty:
        raise CSVParseError("The CSV file is empty.")

    column_map: Dict[str, str] = {}
    for column in dataframe.columns:
        internal = COLUMN_ALIASES.get(_normalize(column))
        if internal and internal not in column_map:
            column_map[internal] = column

    if "itemId" not in column_map:
        raise CSVParseError("Missing required column: Item Id.")

    rows = dataframe.to_dict(orient="records")
    items: List[Dict[str, Any]] = []
    for display_index, row in enumerate(rows, start=2):
        item: Dict[str, Any] = {}
        for internal, column in column_map.items():
            value = _clean_cell(row.get(column))
            if value:
                item[internal] = value
        if "itemId" not in item:
            logger.debug("Skipping row %s without an item id", display_index)
            continue
        items.append(item)

    logger.info("Parsed %s CSV rows into %s import items", len(rows), len(items))
    return items


def _read_frame(raw_csv: str) -> pd.DataFrame:
    try:
        return pd.read_csv(
            io.StringIO(raw_csv),
            sep=None,
            engine="python",
            dtype=str,
            keep_default_na=False,
        )
    except csv.Error:
        logger.debug("Delimiter sniffing failed; reading as comma separated")
    except Exception as exc:  # pragma: no cover - pandas parses many edge cases
        raise CSVParseError(f"Unable to parse CSV: {exc}") from exc

    try:
        return pd.read_csv(io.StringIO(raw_csv), dtype=str, keep_default_na=False)
    except Exception as exc:  # pragma: no cover - pandas parses many edge cases
        raise CSVParseError(f"Unable to parse CSV: {exc}") from exc


def _resolve_csv_payload(csv_text: str, csv_bytes: Optional[bytes]) -> str:
    candidate = csv_text.strip()
    if candidate:
        return candidate

    if csv_bytes is None:
        raise CSVParseError("No CSV content provided.")

    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            return csv_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise CSVParseError("Unable to decode CSV. Please use UTF-8 or Latin-1 encoding.")


def _normalize(column_name: str) -> str:
    return str(column_name).strip().lower().replace("_", " ")


def _clean_cell(value: Optional[str]) -> str:
    if value is None:
        return ""
    return str(value).strip()
