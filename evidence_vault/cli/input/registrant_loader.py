"""Registrant CSV loader for CLI input.

Each row either carries a direct registrant page address, or a registrant
id plus an event id from which the address is built. Unusable rows are
skipped with a warning.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import parse_qs, quote, urlparse

from pydantic import ValidationError

from ..config import DEFAULT_REGISTRANT_VIEW_URL
from ...models.evidence import Entity


logger = logging.getLogger(__name__)


URL_COLUMNS = ("registrant_url", "RegistrantURL")
ID_COLUMNS = ("id", "ID", "Registrant ID", "registrantId", "registrant_id")
COLLECTION_COLUMNS = ("eventId", "Event ID", "event_id")
NAME_COLUMNS = ("name", "Name", "full_name", "Full Name")


def _first_value(row: Dict[str, str], columns) -> str:
    for column in columns:
        value = (row.get(column) or "").strip()
        if value:
            return value
    return ""


def _query_value(url: str, name: str) -> str:
    values = parse_qs(urlparse(url).query).get(name)
    return values[0].strip() if values else ""


def build_registrant_url(
    view_url: str,
    collection_id: str,
    registrant_id: str,
    collection_param: str = "eventId",
) -> str:
    """Registrant page address for an event and registrant id."""
    return f"{view_url}?{collection_param}={quote(collection_id)}&id={quote(registrant_id)}"


def entity_from_row(
    row: Dict[str, str],
    collection_id: Optional[str] = None,
    registrant_view_url: str = DEFAULT_REGISTRANT_VIEW_URL,
    collection_param: str = "eventId",
) -> Optional[Entity]:
    """Build an entity from one CSV row.

    Args:
        row: Column name to value mapping
        collection_id: Run-wide event id, preferred over the CSV column
        registrant_view_url: Base address for rows without a direct URL
        collection_param: Query parameter carrying the event id

    Returns:
        Entity, or None if the row has no usable address or id
    """
    row = {(key or "").strip(): value for key, value in row.items()}

    url = _first_value(row, URL_COLUMNS)
    row_id = _first_value(row, ID_COLUMNS)
    row_collection = _first_value(row, COLLECTION_COLUMNS)
    override = (collection_id or "").strip()

    if url:
        entity_id = _query_value(url, "id") or row_id
        collection = _query_value(url, collection_param) or override or row_collection
    else:
        entity_id = row_id
        collection = override or row_collection
        if not entity_id or not collection:
            return None
        url = build_registrant_url(registrant_view_url, collection, entity_id, collection_param)

    if not entity_id:
        return None

    return Entity(
        id=entity_id,
        source_url=url,
        collection_id=collection or None,
        display_name=_first_value(row, NAME_COLUMNS) or None,
    )


def load_registrants(
    csv_path: Union[str, Path],
    collection_id: Optional[str] = None,
    registrant_view_url: str = DEFAULT_REGISTRANT_VIEW_URL,
    collection_param: str = "eventId",
) -> List[Entity]:
    """Load registrants from a CSV file with a header row.

    Args:
        csv_path: CSV file path
        collection_id: Run-wide event id override
        registrant_view_url: Base address for rows without a direct URL
        collection_param: Query parameter carrying the event id

    Returns:
        Entities in file order (duplicates are kept; the runner skips them)

    Raises:
        FileNotFoundError: If the file does not exist
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Registrant file not found: {csv_path}")

    entities: List[Entity] = []
    with open(csv_path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        for line_number, row in enumerate(reader, start=2):
            if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
                continue
            try:
                entity = entity_from_row(row, collection_id, registrant_view_url, collection_param)
            except ValidationError as e:
                logger.warning(f"Skipping row {line_number}: {e.errors()[0]['msg']}")
                continue
            if entity is None:
                logger.warning(f"Skipping row {line_number}: no registrant URL or id + event id")
                continue
            entities.append(entity)

    logger.info(f"Loaded {len(entities)} registrants from {csv_path}")
    return entities
