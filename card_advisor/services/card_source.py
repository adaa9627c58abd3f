"""Card data sources.

The pipeline only needs ``load() -> list[CardRecord]``. Sheet ingestion lives
outside this package; the sources here cover in-memory data and a local JSON
export of the sheet.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol, runtime_checkable

from card_advisor.models.card_models import CardRecord
from card_advisor.services.errors import DataUnavailable


@runtime_checkable
class CardSource(Protocol):
    """Anything that can produce the card records."""

    def load(self) -> list[CardRecord]:
        ...


class StaticCardSource:
    """Card source over an in-memory list of records."""

    def __init__(self, records: list[CardRecord]) -> None:
        self._records = [dict(record) for record in records]

    def load(self) -> list[CardRecord]:
        return [dict(record) for record in self._records]


class JsonFileCardSource:
    """Card source reading a JSON export of the card sheet.

    The file holds either a JSON array of records or an object with a
    ``"cards"`` array.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> list[CardRecord]:
        """Read records from the file.

        Returns:
            List of card records.

        Raises:
            DataUnavailable: If the file is missing, unreadable or not in
                one of the supported shapes.
        """
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise DataUnavailable(f"Cannot read card data from {self.path}: {e}") from e

        if isinstance(data, dict):
            data = data.get("cards")
        if not isinstance(data, list):
            raise DataUnavailable(f"Card data in {self.path} is not a list of records")

        return [record for record in data if isinstance(record, dict)]
