"""Firestore accessors for the admin_users role collection."""

COLLECTION = 'admin_users'


def doc_ref(db, uid):
    return db.collection(COLLECTION).document(uid)


def get_doc(db, uid):
    return doc_ref(db, uid).get()


def set_doc(db, uid, data, merge=True):
    return doc_ref(db, uid).set(data, merge=merge)
