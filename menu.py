from __future__ import annotations
import logging
from time import time
from uuid import uuid4
from typing import Dict, List, Optional

from pydantic import ValidationError as SchemaError

from database import RecordStore
from errors import NotFound, ValidationError
from schemas import MenuItem, MenuItemIn, MenuItemUpdate, from_record, record_patch, to_record

logger = logging.getLogger(__name__)


class MenuCatalog:
    """In-memory menu shared by every role, written through to ``menu_items``."""

    def __init__(self, store: Optional[RecordStore] = None):
        self._store = store
        self._items: Dict[str, MenuItem] = {}

    def load(self) -> int:
        if self._store is None:
            return 0
        for doc in self._store.select("menu_items"):
            item = from_record(MenuItem, doc)
            self._items[item.id] = item
        return len(self._items)

    def all(self) -> List[MenuItem]:
        return list(self._items.values())

    def available(self) -> List[MenuItem]:
        return [it for it in self._items.values() if it.available]

    def get(self, item_id: str) -> MenuItem:
        item = self._items.get(item_id)
        if item is None:
            raise NotFound(f"Menu item {item_id} not found")
        return item

    def add(self, payload: MenuItemIn, item_id: Optional[str] = None) -> MenuItem:
        item = MenuItem(id=item_id or f"item-{int(time() * 1000)}-{uuid4().hex[:4]}", **payload.model_dump())
        if self._store is not None:
            self._store.insert("menu_items", to_record(item))
        self._items[item.id] = item
        logger.info("Menu item %s added (%s)", item.id, item.name)
        return item

    def update(self, item_id: str, changes: MenuItemUpdate) -> MenuItem:
        current = self.get(item_id)
        fields = changes.model_dump(exclude_unset=True)
        try:
            updated = MenuItem.model_validate({**current.model_dump(), **fields})
        except SchemaError as e:
            raise ValidationError(f"Invalid menu item update: {e.errors()[0]['msg']}")
        if self._store is not None and fields:
            self._store.update("menu_items", item_id, record_patch(updated, *fields))
        self._items[item_id] = updated
        return updated

    def delete(self, item_id: str) -> None:
        self.get(item_id)
        if self._store is not None:
            self._store.delete("menu_items", item_id)
        del self._items[item_id]
        logger.info("Menu item %s deleted", item_id)

    def categories(self) -> List[str]:
        seen: List[str] = []
        for it in self._items.values():
            if it.category not in seen:
                seen.append(it.category)
        return seen

    def search(self, term: str = "", category: Optional[str] = None, available_only: bool = True) -> List[MenuItem]:
        needle = (term or "").strip().lower()
        source = self.available() if available_only else self.all()
        out: List[MenuItem] = []
        for it in source:
            if needle and needle not in it.name.lower() and needle not in it.description.lower():
                continue
            if category and category != "all" and it.category != category:
                continue
            out.append(it)
        return out
