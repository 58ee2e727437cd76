"""
Realtime collection stores.

A CollectionStore mirrors one collection in memory and hands every
subscriber a fresh snapshot (a sorted list of documents) whenever it
changes, the way the dashboard screens expect. With REALTIME_ENABLED a
daemon thread follows the collection's MongoDB change stream; otherwise the
mirror is reloaded on demand with load().
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from database import get_db, get_documents, serialize

logger = logging.getLogger(__name__)

Listener = Callable[[List[dict]], None]


def _sort_key(value):
    return (value is not None, value if value is not None else "")


class CollectionStore:
    def __init__(self, collection_name: str, filter_dict: Optional[dict] = None,
                 sort: Optional[List[Tuple[str, int]]] = None):
        self.collection_name = collection_name
        self.filter_dict = filter_dict or {}
        self.sort = sort or []
        self.loaded = False
        self._docs: Dict[str, dict] = {}
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -- snapshot ---------------------------------------------------------

    def load(self) -> List[dict]:
        docs = get_documents(self.collection_name, self.filter_dict)
        with self._lock:
            self._docs = {doc["id"]: doc for doc in docs}
            self.loaded = True
        self._emit()
        return self.snapshot()

    def snapshot(self) -> List[dict]:
        with self._lock:
            docs = [dict(doc) for doc in self._docs.values()]
        for field, direction in reversed(self.sort):
            docs.sort(key=lambda d: _sort_key(d.get(field)), reverse=direction < 0)
        return docs

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; it gets the current snapshot right away if loaded."""
        with self._lock:
            self._listeners.append(listener)
            loaded = self.loaded
        if loaded:
            listener(self.snapshot())

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _matches(self, doc: dict) -> bool:
        # Stores are scoped by equality filters only
        return all(doc.get(key) == value for key, value in self.filter_dict.items())

    def apply_change(self, change: dict) -> None:
        """Fold one change-stream event into the mirror and notify listeners."""
        op = change.get("operationType")
        doc_id = str(change.get("documentKey", {}).get("_id"))
        with self._lock:
            if op == "delete":
                self._docs.pop(doc_id, None)
            elif op in ("insert", "replace", "update"):
                full = change.get("fullDocument")
                if full is not None:
                    doc = serialize(dict(full))
                elif op == "update" and doc_id in self._docs:
                    doc = dict(self._docs[doc_id])
                    desc = change.get("updateDescription", {})
                    doc.update(desc.get("updatedFields", {}))
                    for field in desc.get("removedFields", []):
                        doc.pop(field, None)
                else:
                    return
                if self._matches(doc):
                    self._docs[doc_id] = doc
                else:
                    self._docs.pop(doc_id, None)
            elif op in ("drop", "invalidate"):
                self._docs = {}
            else:
                return
        self._emit()

    def _emit(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        snap = self.snapshot()
        for listener in listeners:
            try:
                listener(snap)
            except Exception:
                logger.exception("Listener on %s failed", self.collection_name)

    # -- change stream ----------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self.load()
        self._stop.clear()
        self._thread = threading.Thread(target=self._watch, name=f"store-{self.collection_name}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _watch(self) -> None:
        try:
            with get_db()[self.collection_name].watch(full_document="updateLookup",
                                                      max_await_time_ms=1000) as stream:
                while not self._stop.is_set():
                    change = stream.try_next()
                    if change is not None:
                        self.apply_change(change)
        except PyMongoError:
            logger.exception("Change stream on %s stopped", self.collection_name)


STORE_DEFINITIONS = {
    "complaints": ("complaint", [("created_at", -1)]),
    "invoices": ("invoice", [("date", -1)]),
    "inventory_parts": ("inventorypart", [("name", 1)]),
    "inventory_services": ("serviceitem", [("name", 1)]),
    "transactions": ("transaction", [("date", -1)]),
    "expenses": ("expense", [("date", -1)]),
    "amcs": ("amc", [("start_date", -1)]),
    "attendance": ("attendance", [("date", -1), ("clock_in_time", -1)]),
    "quotes": ("quote", [("created_at", -1)]),
    "notifications": ("notification", [("created_at", -1)]),
}


class StoreRegistry:
    def __init__(self):
        self._stores: Dict[str, CollectionStore] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> Optional[CollectionStore]:
        if name not in STORE_DEFINITIONS:
            return None
        with self._lock:
            if name not in self._stores:
                collection_name, sort = STORE_DEFINITIONS[name]
                self._stores[name] = CollectionStore(collection_name, sort=sort)
            return self._stores[name]

    def start_all(self) -> None:
        for name in STORE_DEFINITIONS:
            self.get(name).start()
        logger.info("Started %d realtime stores", len(STORE_DEFINITIONS))

    def stop_all(self) -> None:
        with self._lock:
            stores = list(self._stores.values())
        for store in stores:
            store.stop()
