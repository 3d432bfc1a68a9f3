"""Firestore accessors for Google Calendar tokens and cached events."""

from .query_utils import apply_range, apply_where, order_by, run_transaction

TOKENS_COLLECTION = 'google_calendar_tokens'
EVENTS_COLLECTION = 'calendar_events'
OAUTH_STATES_COLLECTION = 'google_oauth_states'


def tokens_ref(db, tutor_id):
    return db.collection(TOKENS_COLLECTION).document(tutor_id)


def get_tokens_doc(db, tutor_id):
    return tokens_ref(db, tutor_id).get()


def set_tokens(db, tutor_id, data, merge=True):
    return tokens_ref(db, tutor_id).set(data, merge=merge)


def delete_tokens(db, tutor_id):
    return tokens_ref(db, tutor_id).delete()


def list_events(db, tutor_id, start_ts=None, end_ts=None):
    query = apply_where(db.collection(EVENTS_COLLECTION), 'tutor_id', '==', tutor_id)
    query = apply_range(query, 'start_time', start_ts, end_ts)
    return list(order_by(query, 'start_time').stream())


def delete_events(db, tutor_id, limit=5000):
    deleted = 0
    for doc in apply_where(db.collection(EVENTS_COLLECTION), 'tutor_id', '==', tutor_id).limit(limit).stream():
        doc.reference.delete()
        deleted += 1
    return deleted


def oauth_state_ref(db, state):
    return db.collection(OAUTH_STATES_COLLECTION).document(state)


def set_oauth_state(db, state, data):
    return oauth_state_ref(db, state).set(data)


def get_oauth_state_doc(db, state):
    return oauth_state_ref(db, state).get()


def delete_oauth_state(db, state):
    return oauth_state_ref(db, state).delete()


def claim_oauth_state(db, state):
    """Read and delete a state doc in one transaction; None when it was already used."""
    ref = oauth_state_ref(db, state)

    def _claim(transaction):
        snapshot = ref.get(transaction=transaction)
        if not snapshot.exists:
            return None
        transaction.delete(ref)
        return snapshot.to_dict() or {}

    return run_transaction(db, _claim)
