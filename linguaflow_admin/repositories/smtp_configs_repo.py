"""Firestore accessors for the smtp_configs collection."""

from .query_utils import apply_where, order_by

COLLECTION = 'smtp_configs'


def doc_ref(db, config_id):
    return db.collection(COLLECTION).document(config_id)


def new_doc_ref(db):
    return db.collection(COLLECTION).document()


def get_doc(db, config_id):
    return doc_ref(db, config_id).get()


def list_docs(db):
    return list(order_by(db.collection(COLLECTION), 'created_at', descending=True).stream())


def list_active_docs(db):
    return list(apply_where(db.collection(COLLECTION), 'is_active', '==', True).stream())


def get_active_doc(db):
    docs = list(apply_where(db.collection(COLLECTION), 'is_active', '==', True).limit(1).stream())
    return docs[0] if docs else None


def set_doc(db, config_id, data, merge=False):
    return doc_ref(db, config_id).set(data, merge=merge)


def update_doc(db, config_id, updates):
    return doc_ref(db, config_id).update(updates)


def delete_doc(db, config_id):
    return doc_ref(db, config_id).delete()


def deactivate_others(db, keep_id, updated_at):
    changed = 0
    for doc in list_active_docs(db):
        if doc.id == keep_id:
            continue
        doc.reference.update({'is_active': False, 'updated_at': updated_at})
        changed += 1
    return changed
