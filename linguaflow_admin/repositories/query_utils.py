"""Shared Firestore query helpers.

Uses keyword-based filters to avoid positional-argument warnings in newer
Firestore SDK versions. Falls back to positional style for simple test doubles
that do not support keyword filters.
"""

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import BaseQuery, FieldFilter


def apply_where(query, field_path, op_string, value):
    try:
        return query.where(filter=FieldFilter(field_path, op_string, value))
    except TypeError:
        return query.where(field_path, op_string, value)


def apply_equals(query, filters):
    """Apply an ``==`` filter for every non-empty value in ``filters``."""
    for field_path, value in (filters or {}).items():
        if value is None or value == '':
            continue
        query = apply_where(query, field_path, '==', value)
    return query


def apply_range(query, field_path, start=None, end=None):
    if start is not None:
        query = apply_where(query, field_path, '>=', start)
    if end is not None:
        query = apply_where(query, field_path, '<=', end)
    return query


def order_by(query, field_path, descending=False):
    direction = BaseQuery.DESCENDING if descending else BaseQuery.ASCENDING
    return query.order_by(field_path, direction=direction)


def docs_to_dicts(docs):
    records = []
    for doc in docs:
        data = doc.to_dict() or {}
        data['id'] = doc.id
        records.append(data)
    return records


def run_transaction(db, operation):
    """Run ``operation(transaction)`` atomically and return its result.

    Firestore retries the whole callable on contention, so ``operation`` must
    do all of its reads through the transaction before writing.
    """
    return firestore.transactional(operation)(db.transaction())
