"""Firestore accessors for unsubscribe tokens and email preferences."""

from .query_utils import apply_where

TOKENS_COLLECTION = 'unsubscribe_tokens'
PREFERENCES_COLLECTION = 'email_preferences'


def token_ref(db, token):
    return db.collection(TOKENS_COLLECTION).document(token)


def get_token_doc(db, token):
    return token_ref(db, token).get()


def set_token(db, token, data):
    return token_ref(db, token).set(data)


def list_expired_tokens(db, now_ts, limit):
    return list(apply_where(db.collection(TOKENS_COLLECTION), 'expires_at', '<', now_ts).limit(limit).stream())


def count_tokens(db, since_ts=None):
    query = db.collection(TOKENS_COLLECTION)
    if since_ts is not None:
        query = apply_where(query, 'created_at', '>=', since_ts)
    total = 0
    used = 0
    for doc in query.stream():
        total += 1
        if (doc.to_dict() or {}).get('used'):
            used += 1
    return total, used


def preferences_ref(db, user_id):
    return db.collection(PREFERENCES_COLLECTION).document(user_id)


def get_preferences_doc(db, user_id):
    return preferences_ref(db, user_id).get()


def set_preferences(db, user_id, data, merge=True):
    return preferences_ref(db, user_id).set(data, merge=merge)


def stream_preferences(db):
    return db.collection(PREFERENCES_COLLECTION).stream()
