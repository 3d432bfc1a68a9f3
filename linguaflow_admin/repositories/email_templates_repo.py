"""Firestore accessors for email templates and their version history."""

from google.api_core.exceptions import AlreadyExists

from .query_utils import apply_equals, apply_where, order_by, run_transaction

COLLECTION = 'email_templates'
HISTORY_COLLECTION = 'email_template_history'


class VersionConflictError(Exception):
    pass


def doc_ref(db, template_id):
    return db.collection(COLLECTION).document(template_id)


def new_doc_ref(db):
    return db.collection(COLLECTION).document()


def get_doc(db, template_id):
    return doc_ref(db, template_id).get()


def list_docs(db, template_type=None, is_active=None):
    query = apply_equals(db.collection(COLLECTION), {'type': template_type, 'is_active': is_active})
    return list(order_by(query, 'updated_at', descending=True).stream())


def set_doc(db, template_id, data, merge=False):
    return doc_ref(db, template_id).set(data, merge=merge)


def update_doc(db, template_id, updates):
    return doc_ref(db, template_id).update(updates)


def delete_doc(db, template_id):
    return doc_ref(db, template_id).delete()


def history_doc_id(template_id, version):
    return f"{template_id}_v{int(version)}"


def _history_payload(template_id, version, entry):
    payload = dict(entry)
    payload['template_id'] = template_id
    payload['version'] = int(version)
    return payload


def history_ref(db, template_id, version):
    return db.collection(HISTORY_COLLECTION).document(history_doc_id(template_id, version))


def add_history_entry(db, template_id, version, entry):
    """History ids are derived from (template, version); ``create`` refuses to overwrite one."""
    payload = _history_payload(template_id, version, entry)
    try:
        history_ref(db, template_id, version).create(payload)
    except AlreadyExists as e:
        raise VersionConflictError(f'Version {version} of template {template_id} already exists') from e
    return payload


def commit_version(db, template_id, expected_version, changes, entry):
    """Apply ``changes`` and record history for ``changes['version']`` in one transaction.

    Raises ``VersionConflictError`` when the stored version moved past ``expected_version``
    or the history entry for the new version already exists.
    """
    template_ref = doc_ref(db, template_id)
    new_version = int(changes['version'])
    payload = _history_payload(template_id, new_version, entry)

    def _commit(transaction):
        snapshot = template_ref.get(transaction=transaction)
        if not snapshot.exists:
            raise VersionConflictError(f'Template {template_id} no longer exists')
        current = int((snapshot.to_dict() or {}).get('version', 1) or 1)
        if current != int(expected_version):
            raise VersionConflictError(f'Template {template_id} is at version {current}, expected {expected_version}')
        transaction.create(history_ref(db, template_id, new_version), payload)
        transaction.update(template_ref, changes)
        return payload

    try:
        return run_transaction(db, _commit)
    except AlreadyExists as e:
        raise VersionConflictError(f'Version {new_version} of template {template_id} already exists') from e


def list_history_docs(db, template_id, limit=None):
    query = apply_where(db.collection(HISTORY_COLLECTION), 'template_id', '==', template_id)
    query = order_by(query, 'version', descending=True)
    if isinstance(limit, int) and limit > 0:
        query = query.limit(limit)
    return list(query.stream())


def get_history_doc(db, template_id, version):
    return history_ref(db, template_id, version).get()


def delete_history_docs(db, template_id):
    deleted = 0
    for doc in list_history_docs(db, template_id):
        doc.reference.delete()
        deleted += 1
    return deleted
