"""Per-receipt lifecycle: intake, serialized extraction, edits and removal."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from starlette.concurrency import run_in_threadpool

from ..domain.models import ExtractedData, ReceiptItem, ReceiptStatus, SourceFile
from ..domain.reconcile import reconcile
from ..extraction.client import ExtractionSettings, extract_receipt_data
from ..logging import get_logger
from .preprocess import normalize_for_display


LOG = get_logger("orchestrator-lifecycle")

GENERIC_FAILURE_MESSAGE = "Failed to extract data."

Extractor = Callable[[SourceFile, ExtractionSettings], ExtractedData]
SettingsProvider = Callable[[], ExtractionSettings]
Preprocessor = Callable[[SourceFile], SourceFile]
Listener = Callable[[List[ReceiptItem]], None]


def _new_id() -> str:
    return uuid.uuid4().hex


class ReceiptManager:
    """Owns the ordered receipt collection and drives each item through extraction.

    Only this class mutates items. Extraction calls run one at a time in
    submission order, also across concurrently submitted batches; a failure
    is recorded on its own item and never stops the others.
    """

    def __init__(
        self,
        settings_provider: SettingsProvider,
        *,
        extractor: Extractor = extract_receipt_data,
        preprocessor: Preprocessor = normalize_for_display,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._settings_provider = settings_provider
        self._extractor = extractor
        self._preprocessor = preprocessor
        self._id_factory = id_factory
        self._items: Dict[str, ReceiptItem] = {}
        self._listeners: List[Listener] = []
        self._dispatch_lock = asyncio.Lock()

    # ---- observation ------------------------------------------------------------
    def items(self) -> List[ReceiptItem]:
        return [item.snapshot() for item in self._items.values()]

    def get(self, item_id: str) -> Optional[ReceiptItem]:
        item = self._items.get(item_id)
        return item.snapshot() if item else None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for state snapshots; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self) -> None:
        if not self._listeners:
            return
        snapshot = self.items()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                LOG.warning("State listener %r failed: %s", listener, exc)

    # ---- commands -----------------------------------------------------------------
    async def enqueue(self, files: Iterable[SourceFile]) -> List[ReceiptItem]:
        """Intake a batch and extract every item; returns the final snapshots."""
        items = await self.intake(files)
        await self.dispatch(items)
        return [self.get(item.id) or item for item in items]

    async def intake(self, files: Iterable[SourceFile]) -> List[ReceiptItem]:
        """Preprocess the batch concurrently, then insert it as IDLE items."""
        sources = list(files)
        if not sources:
            return []
        prepared = await asyncio.gather(*(run_in_threadpool(self._prepare, s) for s in sources))
        created: List[ReceiptItem] = []
        for source in prepared:
            item = ReceiptItem(id=self._id_factory(), source=source)
            self._items[item.id] = item
            created.append(item.snapshot())
        LOG.info("Queued %d receipt(s) for extraction", len(created))
        self._emit()
        return created

    def _prepare(self, source: SourceFile) -> SourceFile:
        try:
            return self._preprocessor(source)
        except Exception as exc:
            LOG.error("Preprocessing failed for %s: %s; using original file", source.filename, exc)
            return source

    async def dispatch(self, items: Iterable[ReceiptItem]) -> None:
        """Extract a batch in order; a later batch waits until this one is done."""
        batch = list(items)
        async with self._dispatch_lock:
            for item in batch:
                await self.run_extraction(item.id)

    async def run_extraction(self, item_id: str) -> None:
        """Extract one item and record the outcome on it. Never raises."""
        item = self._items.get(item_id)
        if item is None:
            LOG.debug("Skipping extraction for removed receipt %s", item_id)
            return
        self._set(item, status=ReceiptStatus.PROCESSING, extracted=None, error_message=None)

        try:
            settings = self._settings_provider()
            raw = await run_in_threadpool(self._extractor, item.source, settings)
            data = reconcile(raw)
        except Exception as exc:
            message = str(exc).strip() or GENERIC_FAILURE_MESSAGE
            LOG.error("Extraction failed for %s (%s): %s", item.source.filename, item_id, message)
            self._finish(item_id, status=ReceiptStatus.ERROR, extracted=None, error_message=message)
            return

        LOG.info(
            "Extracted %s: shop=%r date=%s total=%.2f moms=%.2f",
            item.source.filename,
            data.shop_name,
            data.purchase_date,
            data.total_amount,
            data.moms,
        )
        self._finish(item_id, status=ReceiptStatus.COMPLETED, extracted=data, error_message=None)

    def _finish(self, item_id: str, **changes) -> None:
        item = self._items.get(item_id)
        if item is None:
            LOG.info("Receipt %s was deleted while processing; dropping result", item_id)
            return
        self._set(item, **changes)

    def _set(self, item: ReceiptItem, **changes) -> None:
        self._items[item.id] = replace(item, **changes)
        self._emit()

    def delete(self, item_id: str) -> bool:
        """Remove an item in any state; unknown ids are ignored."""
        removed = self._items.pop(item_id, None) is not None
        if removed:
            self._emit()
        return removed

    def edit_result(self, item_id: str, data: ExtractedData) -> bool:
        """Store user-edited values verbatim on a completed item."""
        item = self._items.get(item_id)
        if item is None or item.status is not ReceiptStatus.COMPLETED:
            return False
        self._set(item, extracted=data)
        return True

    def clear(self) -> int:
        count = len(self._items)
        self._items.clear()
        if count:
            self._emit()
        return count
