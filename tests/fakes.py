"""In-memory Firestore double shared by multi-collection tests.

Only the call shapes used by the repositories are supported: positional
``where``, ``order_by(field, direction=...)``, ``limit``, ``offset``, ``count``, ``stream``, and
document ``get/set/create/update/delete`` plus inline transactions. Keyword ``filter=`` raises TypeError so
``apply_where`` takes its positional fallback.
"""

import copy
import itertools

from google.api_core.exceptions import AlreadyExists

_ids = itertools.count(1)

_OPS = {
    '==': lambda left, right: left == right,
    '<': lambda left, right: left < right,
    '<=': lambda left, right: left <= right,
    '>': lambda left, right: left > right,
    '>=': lambda left, right: left >= right,
}


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = copy.deepcopy(data)
        self.exists = data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocRef:
    def __init__(self, db, collection_name, doc_id):
        self._db = db
        self._collection = collection_name
        self.id = doc_id

    def _docs(self):
        return self._db.store.setdefault(self._collection, {})

    def get(self, transaction=None):
        return FakeSnapshot(self, self._docs().get(self.id))

    def set(self, data, merge=False):
        docs = self._docs()
        if merge and self.id in docs:
            docs[self.id].update(copy.deepcopy(data))
        else:
            docs[self.id] = copy.deepcopy(data)

    def update(self, updates):
        docs = self._docs()
        if self.id not in docs:
            raise KeyError(f'No document to update: {self._collection}/{self.id}')
        for key, value in updates.items():
            target = docs[self.id]
            parts = key.split('.')
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = copy.deepcopy(value)

    def create(self, data):
        if self.id in self._docs():
            raise AlreadyExists(f'Document already exists: {self._collection}/{self.id}')
        self._docs()[self.id] = copy.deepcopy(data)

    def delete(self):
        self._docs().pop(self.id, None)


class FakeQuery:
    def __init__(self, db, collection_name, filters=(), orders=(), limit_count=None, offset_count=0):
        self._db = db
        self._collection = collection_name
        self._filters = tuple(filters)
        self._orders = tuple(orders)
        self._limit = limit_count
        self._offset = offset_count

    def _copy(self, **changes):
        state = {
            'filters': self._filters,
            'orders': self._orders,
            'limit_count': self._limit,
            'offset_count': self._offset,
        }
        state.update(changes)
        return FakeQuery(self._db, self._collection, **state)

    def where(self, *args, **kwargs):
        if 'filter' in kwargs:
            raise TypeError('filter keyword unsupported')
        field_path, op_string, value = args
        return self._copy(filters=self._filters + ((field_path, op_string, value),))

    def order_by(self, field_path, direction='ASCENDING'):
        return self._copy(orders=self._orders + ((field_path, direction),))

    def limit(self, count):
        return self._copy(limit_count=count)

    def offset(self, num_to_skip):
        return self._copy(offset_count=num_to_skip)

    def count(self, alias=None):
        return FakeAggregation(self, alias)

    def _matches(self, data):
        for field_path, op_string, value in self._filters:
            current = data.get(field_path)
            if current is None and op_string != '==':
                return False
            try:
                if not _OPS[op_string](current, value):
                    return False
            except TypeError:
                return False
        return True

    def stream(self):
        docs = self._db.store.get(self._collection, {})
        matched = [(doc_id, data) for doc_id, data in list(docs.items()) if self._matches(data)]
        for field_path, direction in reversed(self._orders):
            matched.sort(
                key=lambda item: (item[1].get(field_path) is not None, item[1].get(field_path) or 0),
                reverse=(direction == 'DESCENDING'),
            )
        matched = matched[self._offset:]
        if self._limit is not None:
            matched = matched[:self._limit]
        self._db.streamed.append((self._collection, len(matched)))
        return iter([FakeSnapshot(FakeDocRef(self._db, self._collection, doc_id), data) for doc_id, data in matched])


class FakeAggregationResult:
    def __init__(self, alias, value):
        self.alias = alias
        self.value = value


class FakeAggregation:
    """``query.count(alias=...).get()`` returns ``[[result]]`` like the Firestore client."""

    def __init__(self, query, alias):
        self._query = query
        self._alias = alias

    def get(self):
        query = self._query._copy(limit_count=None, offset_count=0)
        total = sum(1 for data in query._db.store.get(query._collection, {}).values() if query._matches(data))
        return [[FakeAggregationResult(self._alias, total)]]


class FakeCollection(FakeQuery):
    def __init__(self, db, collection_name):
        super().__init__(db, collection_name)

    def document(self, doc_id=None):
        return FakeDocRef(self._db, self._collection, doc_id or f'doc{next(_ids)}')


class FakeDB:
    def __init__(self, initial=None):
        self.store = copy.deepcopy(initial or {})
        self.streamed = []

    def collection(self, name):
        return FakeCollection(self, name)

    def docs(self, name):
        return self.store.get(name, {})

    def transaction(self):
        return FakeTransaction(self)


class FakeTransaction:
    """Applies writes immediately; ``FakeFirestore.transactional`` runs the callable once."""

    def __init__(self, db):
        self.db = db

    def set(self, reference, data, merge=False):
        reference.set(data, merge=merge)

    def update(self, reference, updates):
        reference.update(updates)

    def create(self, reference, data):
        reference.create(data)

    def delete(self, reference):
        reference.delete()


class FakeFirestore:
    """Stand-in for the ``firestore`` module used by ``query_utils.run_transaction``."""

    @staticmethod
    def transactional(operation):
        return operation
