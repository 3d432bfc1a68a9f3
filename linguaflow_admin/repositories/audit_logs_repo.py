"""Firestore accessors for the admin_audit_logs collection."""

from .query_utils import apply_equals, apply_range, apply_where, order_by

COLLECTION = 'admin_audit_logs'


def add_doc(db, data):
    ref = db.collection(COLLECTION).document()
    ref.set(data)
    return ref.id


def _filtered_query(db, user_id=None, action=None, resource=None, start_ts=None, end_ts=None):
    query = apply_equals(db.collection(COLLECTION), {
        'user_id': user_id,
        'action': action,
        'resource': resource,
    })
    return apply_range(query, 'timestamp', start_ts, end_ts)


def query_logs(db, user_id=None, action=None, resource=None, start_ts=None, end_ts=None, limit=None, offset=None):
    query = _filtered_query(db, user_id, action, resource, start_ts, end_ts)
    query = order_by(query, 'timestamp', descending=True)
    if isinstance(offset, int) and offset > 0:
        query = query.offset(offset)
    if isinstance(limit, int) and limit > 0:
        query = query.limit(limit)
    return list(query.stream())


def count_logs(db, user_id=None, action=None, resource=None, start_ts=None, end_ts=None):
    """Server-side count aggregation over the same filters as ``query_logs``."""
    query = _filtered_query(db, user_id, action, resource, start_ts, end_ts)
    results = query.count(alias='total').get()
    return int(results[0][0].value) if results and results[0] else 0


def list_by_user(db, user_id, limit):
    return list(apply_where(db.collection(COLLECTION), 'user_id', '==', user_id).limit(limit).stream())


def delete_older_than(db, cutoff_ts, limit):
    deleted = 0
    query = apply_where(db.collection(COLLECTION), 'timestamp', '<', cutoff_ts)
    for doc in query.limit(limit).stream():
        doc.reference.delete()
        deleted += 1
    return deleted


