"""Firestore accessors for admin rate limit counters."""

from .query_utils import apply_where


def counter_doc_ref(db, collection_name, counter_id):
    return db.collection(collection_name).document(counter_id)


def delete_expired_counters(db, collection_name, now_ts, limit=500):
    deleted = 0
    for doc in apply_where(db.collection(collection_name), 'expires_at', '<', now_ts).limit(limit).stream():
        doc.reference.delete()
        deleted += 1
    return deleted
