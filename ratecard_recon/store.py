"""
store.py

Persistence boundary for rate cards. The importer only needs ``load_all`` for
snapshots and ``insert`` / ``delete`` / ``set_archived`` for writes; anything
implementing ``RateCardStore`` can back it.

InMemoryRateCardStore serves tests and embedding. JsonFileRateCardStore keeps
every card in one JSON document and rewrites it atomically on each change.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Protocol

from ratecard_recon.contracts import STORE, contract_header
from ratecard_recon.errors import StoreError
from ratecard_recon.models import NormalizedCard

logger = logging.getLogger(__name__)


class RateCardStore(Protocol):
    def load_all(self) -> list[NormalizedCard]: ...

    def get(self, card_id: str) -> NormalizedCard | None: ...

    def insert(self, card: NormalizedCard) -> str: ...

    def delete(self, card_id: str) -> None: ...

    def set_archived(self, card_id: str, archived: bool) -> NormalizedCard: ...


def new_card_id() -> str:
    return uuid.uuid4().hex


class InMemoryRateCardStore:
    def __init__(self, cards: Iterable[NormalizedCard] = ()) -> None:
        self._cards: dict[str, NormalizedCard] = {}
        for card in cards:
            card_id = card.id or new_card_id()
            self._cards[card_id] = card.with_id(card_id)

    def load_all(self) -> list[NormalizedCard]:
        return list(self._cards.values())

    def get(self, card_id: str) -> NormalizedCard | None:
        return self._cards.get(card_id)

    def insert(self, card: NormalizedCard) -> str:
        card_id = new_card_id()
        self._cards[card_id] = card.with_id(card_id)
        return card_id

    def delete(self, card_id: str) -> None:
        if self._cards.pop(card_id, None) is None:
            raise StoreError(f"Rate card not found: {card_id}")

    def set_archived(self, card_id: str, archived: bool) -> NormalizedCard:
        card = self._cards.get(card_id)
        if card is None:
            raise StoreError(f"Rate card not found: {card_id}")
        updated = replace(card, archived=archived)
        self._cards[card_id] = updated
        return updated


class JsonFileRateCardStore:
    """
    Cards persisted in a single JSON file.

    Every read goes back to disk, so two processes sharing a file see each
    other's committed writes at their next snapshot.
    """

    CONTRACT = STORE

    def __init__(self, path: "str | Path") -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, NormalizedCard]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Could not read rate card store {self.path}: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("rate_cards"), list):
            raise StoreError(f"Rate card store {self.path} is not a rate card document")
        try:
            cards = [NormalizedCard.from_dict(item) for item in payload["rate_cards"]]
        except (TypeError, ValueError, AttributeError) as exc:
            raise StoreError(f"Rate card store {self.path} holds an unreadable card: {exc}") from exc
        return {card.id: card for card in cards if card.id}

    def _write(self, cards: dict[str, NormalizedCard]) -> None:
        document = {
            "contract": contract_header(self.CONTRACT),
            "rate_cards": [card.to_dict() for card in cards.values()],
        }
        text = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.stem}.", suffix=".json", dir=str(self.path.parent))
            os.close(fd)
            temp_path = Path(tmp_name)
            try:
                temp_path.write_text(text, encoding="utf-8")
                os.replace(temp_path, self.path)
            finally:
                if temp_path.exists():
                    temp_path.unlink()
        except OSError as exc:
            raise StoreError(f"Could not write rate card store {self.path}: {exc}") from exc

    def load_all(self) -> list[NormalizedCard]:
        return list(self._read().values())

    def get(self, card_id: str) -> NormalizedCard | None:
        return self._read().get(card_id)

    def insert(self, card: NormalizedCard) -> str:
        cards = self._read()
        card_id = new_card_id()
        cards[card_id] = card.with_id(card_id)
        self._write(cards)
        logger.debug("Stored rate card %s in %s", card_id, self.path)
        return card_id

    def delete(self, card_id: str) -> None:
        cards = self._read()
        if cards.pop(card_id, None) is None:
            raise StoreError(f"Rate card not found: {card_id}")
        self._write(cards)

    def set_archived(self, card_id: str, archived: bool) -> NormalizedCard:
        cards = self._read()
        card = cards.get(card_id)
        if card is None:
            raise StoreError(f"Rate card not found: {card_id}")
        updated = replace(card, archived=archived)
        cards[card_id] = updated
        self._write(cards)
        return updated
