"""Firestore accessors for discussion topics."""

from .query_utils import apply_equals, order_by

COLLECTION = 'discussion_topics'


def doc_ref(db, topic_id):
    return db.collection(COLLECTION).document(topic_id)


def new_doc_ref(db):
    return db.collection(COLLECTION).document()


def get_doc(db, topic_id):
    return doc_ref(db, topic_id).get()


def list_docs(db, student_id, tutor_id, level=None):
    query = apply_equals(db.collection(COLLECTION), {
        'student_id': student_id,
        'tutor_id': tutor_id,
        'level': level,
    })
    return list(order_by(query, 'created_at', descending=True).stream())


def update_doc(db, topic_id, updates):
    return doc_ref(db, topic_id).update(updates)


def delete_doc(db, topic_id):
    return doc_ref(db, topic_id).delete()
