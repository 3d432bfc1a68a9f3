"""Firestore accessors for the email_logs collection."""

from .query_utils import apply_equals, apply_range, apply_where, order_by

COLLECTION = 'email_logs'


def doc_ref(db, log_id):
    return db.collection(COLLECTION).document(log_id)


def add_doc(db, data):
    ref = db.collection(COLLECTION).document()
    ref.set(data)
    return ref.id


def get_doc(db, log_id):
    return doc_ref(db, log_id).get()


def update_doc(db, log_id, updates):
    return doc_ref(db, log_id).update(updates)


def query_window(db, window_start, window_end=None, limit=None, **filters):
    query = apply_equals(db.collection(COLLECTION), filters)
    query = apply_range(query, 'created_at', window_start, window_end)
    query = order_by(query, 'created_at', descending=True)
    if isinstance(limit, int) and limit > 0:
        query = query.limit(limit)
    return list(query.stream())


def list_due_retries(db, now_ts, limit=50):
    query = apply_where(db.collection(COLLECTION), 'status', '==', 'failed')
    query = apply_where(query, 'next_retry_at', '<=', now_ts)
    return list(query.limit(limit).stream())


def list_by_template(db, template_id, since_ts, limit=1):
    query = apply_where(db.collection(COLLECTION), 'template_id', '==', template_id)
    query = apply_where(query, 'created_at', '>=', since_ts)
    return list(query.limit(limit).stream())


def list_by_user(db, user_id, limit):
    return list(apply_where(db.collection(COLLECTION), 'user_id', '==', user_id).limit(limit).stream())


def delete_older_than(db, cutoff_ts, limit, **filters):
    query = apply_equals(db.collection(COLLECTION), filters)
    query = apply_where(query, 'created_at', '<', cutoff_ts)
    deleted = 0
    for doc in query.limit(limit).stream():
        doc.reference.delete()
        deleted += 1
    return deleted
