"""Firestore accessors for GDPR consent records and deletion requests."""

from .query_utils import apply_where, order_by

CONSENT_COLLECTION = 'gdpr_consent_records'
DELETION_COLLECTION = 'gdpr_deletion_requests'


def add_consent(db, data):
    ref = db.collection(CONSENT_COLLECTION).document()
    ref.set(data)
    return ref.id


def list_consents(db, user_id, purpose=None, limit=None):
    query = apply_where(db.collection(CONSENT_COLLECTION), 'user_id', '==', user_id)
    if purpose:
        query = apply_where(query, 'purpose', '==', purpose)
    query = order_by(query, 'created_at', descending=True)
    if isinstance(limit, int) and limit > 0:
        query = query.limit(limit)
    return list(query.stream())


def stream_consents(db):
    return db.collection(CONSENT_COLLECTION).stream()


def delete_consents(db, user_id, limit):
    deleted = 0
    for doc in apply_where(db.collection(CONSENT_COLLECTION), 'user_id', '==', user_id).limit(limit).stream():
        doc.reference.delete()
        deleted += 1
    return deleted


def deletion_doc_ref(db, token):
    return db.collection(DELETION_COLLECTION).document(token)


def list_pending_deletions(db):
    return list(apply_where(db.collection(DELETION_COLLECTION), 'status', '==', 'pending').stream())
