"""Firestore accessors for vocabulary sessions and progress."""

from .query_utils import apply_where, order_by

SESSIONS_COLLECTION = 'vocabulary_sessions'
PROGRESS_COLLECTION = 'vocabulary_progress'


def session_ref(db, session_id):
    return db.collection(SESSIONS_COLLECTION).document(session_id)


def get_session_doc(db, session_id):
    return session_ref(db, session_id).get()


def set_session(db, session_id, data, merge=True):
    return session_ref(db, session_id).set(data, merge=merge)


def update_session(db, session_id, updates):
    return session_ref(db, session_id).update(updates)


def list_active_sessions(db, student_id, limit):
    query = apply_where(db.collection(SESSIONS_COLLECTION), 'student_id', '==', student_id)
    query = apply_where(query, 'is_active', '==', True)
    query = order_by(query, 'updated_at', descending=True)
    return list(query.limit(limit).stream())


def progress_ref(db, student_id):
    return db.collection(PROGRESS_COLLECTION).document(student_id)


def get_progress_doc(db, student_id):
    return progress_ref(db, student_id).get()


def set_progress(db, student_id, data, merge=True):
    return progress_ref(db, student_id).set(data, merge=merge)
