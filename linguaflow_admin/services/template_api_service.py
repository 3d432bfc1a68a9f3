"""Business logic handlers for email template admin APIs."""

from linguaflow_admin.repositories import email_logs_repo, email_templates_repo
from linguaflow_admin.services import template_utils

CONTENT_FIELDS = ('subject', 'html_content', 'text_content', 'placeholders')
EDITABLE_FIELDS = ('name',) + CONTENT_FIELDS + ('is_active',)
BULK_OPERATIONS = {
    'activate': 'Activate selected templates',
    'deactivate': 'Deactivate selected templates',
    'delete': 'Delete selected inactive templates',
    'duplicate': 'Create inactive copies of selected templates',
    'export': 'Export selected templates as JSON',
    'update_metadata': 'Update name, subject or active flag',
    'validate': 'Validate template content',
}
BULK_METADATA_FIELDS = {'name', 'subject', 'is_active'}
RECENT_USAGE_WINDOW_SECONDS = 30 * 24 * 60 * 60
MAX_BULK_TEMPLATES = 100
VERSION_CONFLICT_MESSAGE = 'Template was modified by another request. Reload and try again.'


def _normalize_payload(payload):
    """Accept both ``html``/``text`` and the stored ``html_content``/``text_content`` keys."""
    normalized = {}
    for key in ('name', 'type', 'subject', 'placeholders', 'is_active', 'change_note'):
        if key in payload:
            normalized[key] = payload[key]
    for short_key, stored_key in (('html', 'html_content'), ('text', 'text_content')):
        if stored_key in payload:
            normalized[stored_key] = payload[stored_key]
        elif short_key in payload:
            normalized[stored_key] = payload[short_key]
    if 'html_content' in normalized:
        normalized['html_content'] = template_utils.sanitize_html(str(normalized['html_content'] or ''))
    if 'placeholders' in normalized and not isinstance(normalized['placeholders'], list):
        normalized['placeholders'] = []
    return normalized


def _serialize(template_id, data):
    template = dict(data or {})
    template['id'] = template_id
    return template


def _history_entry(template, created_by, now_ts, change_note=''):
    return {
        'name': template.get('name', ''),
        'subject': template.get('subject', ''),
        'html_content': template.get('html_content', ''),
        'text_content': template.get('text_content'),
        'placeholders': list(template.get('placeholders') or []),
        'change_note': change_note or '',
        'created_by': created_by,
        'created_at': now_ts,
    }


def _load_template(app_ctx, template_id):
    snapshot = email_templates_repo.get_doc(app_ctx.db, template_id)
    if not snapshot.exists:
        return None
    return snapshot.to_dict() or {}


def list_templates(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:template:read')
    if error:
        return error
    template_type = (request.args.get('type', '') or '').strip() or None
    active_raw = (request.args.get('active', '') or '').strip().lower()
    is_active = None
    if active_raw in {'true', '1'}:
        is_active = True
    elif active_raw in {'false', '0'}:
        is_active = False
    try:
        docs = email_templates_repo.list_docs(app_ctx.db, template_type=template_type, is_active=is_active)
    except Exception as e:
        app_ctx.logger.error(f"Error listing email templates: {e}")
        return app_ctx.jsonify({'error': 'Failed to fetch templates'}), 500
    return app_ctx.jsonify({'templates': [_serialize(doc.id, doc.to_dict()) for doc in docs]})


def create_template(app_ctx, request):
    decoded_token, error = app_ctx.require_admin(request, 'email:template:write')
    if error:
        return error
    payload = _normalize_payload(app_ctx.get_json_body(request))
    if not all(str(payload.get(name) or '').strip() for name in ('name', 'type', 'subject', 'html_content')):
        return app_ctx.jsonify({'error': 'Name, type, subject, and HTML content are required'}), 400

    if not payload.get('placeholders'):
        payload['placeholders'] = template_utils.find_unresolved_placeholders(
            payload['subject'], payload['html_content'], payload.get('text_content') or ''
        )
    validation = template_utils.validate_template_content(payload)
    if not validation['is_valid']:
        return app_ctx.jsonify({'error': 'Invalid template', 'details': validation['errors']}), 400

    now_ts = app_ctx.time.time()
    uid = decoded_token.get('uid', '')
    template = {
        'name': str(payload['name']).strip(),
        'type': str(payload['type']).strip(),
        'subject': payload['subject'],
        'html_content': payload['html_content'],
        'text_content': payload.get('text_content'),
        'placeholders': payload['placeholders'],
        'is_active': bool(payload.get('is_active', True)),
        'version': 1,
        'created_by': uid,
        'updated_by': uid,
        'created_at': now_ts,
        'updated_at': now_ts,
    }
    try:
        ref = email_templates_repo.new_doc_ref(app_ctx.db)
        ref.set(template)
        email_templates_repo.add_history_entry(app_ctx.db, ref.id, 1, _history_entry(template, uid, now_ts, 'Initial version'))
    except Exception as e:
        app_ctx.logger.error(f"Error creating email template: {e}")
        return app_ctx.jsonify({'error': 'Failed to create template'}), 500

    app_ctx.record_audit_event(request, decoded_token, 'template_created', 'email_template', resource_id=ref.id,
                               new_values={'name': template['name'], 'type': template['type']})
    return app_ctx.jsonify({'template': _serialize(ref.id, template), 'warnings': validation['warnings']}), 201


def get_template(app_ctx, request, template_id):
    _decoded, error = app_ctx.require_admin(request, 'email:template:read')
    if error:
        return error
    template = _load_template(app_ctx, template_id)
    if template is None:
        return app_ctx.jsonify({'error': 'Template not found'}), 404
    return app_ctx.jsonify({'template': _serialize(template_id, template)})


def update_template(app_ctx, request, template_id):
    decoded_token, error = app_ctx.require_admin(request, 'email:template:write')
    if error:
        return error
    existing = _load_template(app_ctx, template_id)
    if existing is None:
        return app_ctx.jsonify({'error': 'Template not found'}), 404

    payload = _normalize_payload(app_ctx.get_json_body(request))
    changes = {key: payload[key] for key in EDITABLE_FIELDS if key in payload}
    if not changes:
        return app_ctx.jsonify({'error': 'No valid fields to update'}), 400
    if 'is_active' in changes:
        changes['is_active'] = bool(changes['is_active'])

    merged = dict(existing)
    merged.update(changes)
    validation = template_utils.validate_template_content(merged)
    if not validation['is_valid']:
        return app_ctx.jsonify({'error': 'Invalid template', 'details': validation['errors']}), 400

    now_ts = app_ctx.time.time()
    uid = decoded_token.get('uid', '')
    content_changed = any(key in changes and changes[key] != existing.get(key) for key in CONTENT_FIELDS)
    current_version = int(existing.get('version', 1) or 1)
    if content_changed:
        changes['version'] = current_version + 1
    changes['updated_by'] = uid
    changes['updated_at'] = now_ts
    merged.update(changes)
    try:
        if content_changed:
            email_templates_repo.commit_version(
                app_ctx.db,
                template_id,
                current_version,
                changes,
                _history_entry(merged, uid, now_ts, payload.get('change_note', '')),
            )
        else:
            email_templates_repo.update_doc(app_ctx.db, template_id, changes)
    except email_templates_repo.VersionConflictError as e:
        app_ctx.logger.info(f"Rejected concurrent update of email template {template_id}: {e}")
        return app_ctx.jsonify({'error': VERSION_CONFLICT_MESSAGE}), 409
    except Exception as e:
        app_ctx.logger.error(f"Error updating email template {template_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to update template'}), 500

    old_values = {key: existing.get(key) for key in changes if key not in {'updated_by', 'updated_at'}}
    new_values = {key: value for key, value in changes.items() if key not in {'updated_by', 'updated_at'}}
    app_ctx.record_audit_event(request, decoded_token, 'template_updated', 'email_template', resource_id=template_id,
                               old_values=old_values, new_values=new_values)
    return app_ctx.jsonify({'template': _serialize(template_id, merged), 'warnings': validation['warnings']})


def delete_template(app_ctx, request, template_id):
    decoded_token, error = app_ctx.require_admin(request, 'email:template:delete')
    if error:
        return error
    existing = _load_template(app_ctx, template_id)
    if existing is None:
        return app_ctx.jsonify({'error': 'Template not found'}), 404
    if existing.get('is_active'):
        return app_ctx.jsonify({'error': 'Cannot delete active template. Deactivate it first.'}), 400
    try:
        email_templates_repo.delete_doc(app_ctx.db, template_id)
        email_templates_repo.delete_history_docs(app_ctx.db, template_id)
    except Exception as e:
        app_ctx.logger.error(f"Error deleting email template {template_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to delete template'}), 500
    app_ctx.record_audit_event(request, decoded_token, 'template_deleted', 'email_template', resource_id=template_id,
                               old_values={'name': existing.get('name'), 'type': existing.get('type')})
    return app_ctx.jsonify({'message': 'Template deleted successfully'})


def get_history(app_ctx, request, template_id):
    _decoded, error = app_ctx.require_admin(request, 'email:template:read')
    if error:
        return error
    template = _load_template(app_ctx, template_id)
    if template is None:
        return app_ctx.jsonify({'error': 'Template not found'}), 404
    versions = []
    for doc in email_templates_repo.list_history_docs(app_ctx.db, template_id):
        entry = doc.to_dict() or {}
        entry['id'] = doc.id
        versions.append(entry)
    return app_ctx.jsonify({
        'template_id': template_id,
        'current_version': template.get('version', 1),
        'versions': versions,
    })


def rollback_template(app_ctx, request, template_id):
    decoded_token, error = app_ctx.require_admin(request, 'email:template:write')
    if error:
        return error
    version = app_ctx.get_json_body(request).get('version')
    if isinstance(version, bool) or not isinstance(version, int):
        return app_ctx.jsonify({'error': 'Version must be an integer'}), 400
    template = _load_template(app_ctx, template_id)
    if template is None:
        return app_ctx.jsonify({'error': 'Template not found'}), 404
    snapshot = email_templates_repo.get_history_doc(app_ctx.db, template_id, version)
    if not snapshot.exists:
        return app_ctx.jsonify({'error': 'Version not found'}), 404
    target = snapshot.to_dict() or {}

    now_ts = app_ctx.time.time()
    uid = decoded_token.get('uid', '')
    current_version = int(template.get('version', 1) or 1)
    new_version = current_version + 1
    changes = {
        'subject': target.get('subject', ''),
        'html_content': target.get('html_content', ''),
        'text_content': target.get('text_content'),
        'placeholders': list(target.get('placeholders') or []),
        'version': new_version,
        'updated_by': uid,
        'updated_at': now_ts,
    }
    merged = dict(template)
    merged.update(changes)
    try:
        email_templates_repo.commit_version(
            app_ctx.db,
            template_id,
            current_version,
            changes,
            _history_entry(merged, uid, now_ts, f'Rolled back to version {version}'),
        )
    except email_templates_repo.VersionConflictError as e:
        app_ctx.logger.info(f"Rejected concurrent rollback of email template {template_id}: {e}")
        return app_ctx.jsonify({'error': VERSION_CONFLICT_MESSAGE}), 409
    except Exception as e:
        app_ctx.logger.error(f"Error rolling back email template {template_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to roll back template'}), 500

    app_ctx.record_audit_event(request, decoded_token, 'template_rolled_back', 'email_template',
                               resource_id=template_id,
                               old_values={'version': template.get('version', 1)},
                               new_values={'version': new_version, 'restored_version': version})
    return app_ctx.jsonify({
        'message': f'Template rolled back to version {version}',
        'template': _serialize(template_id, merged),
    })


def preview_template(app_ctx, request, template_id):
    _decoded, error = app_ctx.require_admin(request, 'email:template:read')
    if error:
        return error
    params = {}
    if request.method == 'POST':
        test_parameters = app_ctx.get_json_body(request).get('testParameters')
        if not isinstance(test_parameters, dict):
            return app_ctx.jsonify({'error': 'Test parameters are required'}), 400
        params = test_parameters
    template = _load_template(app_ctx, template_id)
    if template is None:
        return app_ctx.jsonify({'error': 'Template not found'}), 404

    sample_data = template_utils.get_sample_data(template.get('type'))
    sample_data.update(params)
    preview = {
        'subject': template_utils.replace_placeholders(template.get('subject', ''), sample_data),
        'html': template_utils.replace_placeholders(template.get('html_content', ''), sample_data),
        'text': template_utils.replace_placeholders(template.get('text_content') or '', sample_data),
    }
    unresolved = template_utils.find_unresolved_placeholders(preview['subject'], preview['html'], preview['text'])
    warnings = template_utils.validate_template_content(template)['warnings']
    if unresolved:
        warnings.append(f"Unresolved placeholders: {', '.join(unresolved)}")
    return app_ctx.jsonify({
        'template': _serialize(template_id, template),
        'preview': preview,
        'sampleData': sample_data,
        'unresolvedPlaceholders': unresolved,
        'warnings': warnings,
    })


def list_bulk_operations(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:template:read')
    if error:
        return error
    return app_ctx.jsonify({
        'operations': [{'id': name, 'description': text} for name, text in BULK_OPERATIONS.items()],
        'maxTemplates': MAX_BULK_TEMPLATES,
    })


def _bulk_set_active(app_ctx, template_id, template, is_active, uid, now_ts):
    email_templates_repo.update_doc(app_ctx.db, template_id, {
        'is_active': is_active,
        'updated_by': uid,
        'updated_at': now_ts,
    })
    return {'id': template_id, 'is_active': is_active}


def _bulk_delete(app_ctx, template_id, template, now_ts):
    if template.get('is_active'):
        raise ValueError('Cannot delete active template')
    result = {'id': template_id, 'deleted': True}
    if email_logs_repo.list_by_template(app_ctx.db, template_id, now_ts - RECENT_USAGE_WINDOW_SECONDS, limit=1):
        result['warning'] = 'Template was used in the last 30 days'
    email_templates_repo.delete_doc(app_ctx.db, template_id)
    email_templates_repo.delete_history_docs(app_ctx.db, template_id)
    return result


def _bulk_duplicate(app_ctx, template_id, template, uid, now_ts):
    copy = {key: value for key, value in template.items() if key != 'id'}
    copy.update({
        'name': f"{template.get('name', '')} (Copy)",
        'is_active': False,
        'version': 1,
        'created_by': uid,
        'updated_by': uid,
        'created_at': now_ts,
        'updated_at': now_ts,
    })
    ref = email_templates_repo.new_doc_ref(app_ctx.db)
    ref.set(copy)
    email_templates_repo.add_history_entry(app_ctx.db, ref.id, 1, _history_entry(copy, uid, now_ts, f'Duplicated from {template_id}'))
    return {'id': ref.id, 'source_id': template_id, 'name': copy['name']}


def _bulk_update_metadata(app_ctx, template_id, data, uid, now_ts):
    updates = {key: value for key, value in (data or {}).items() if key in BULK_METADATA_FIELDS}
    if not updates:
        raise ValueError('No valid metadata fields to update')
    if 'is_active' in updates:
        updates['is_active'] = bool(updates['is_active'])
    updates['updated_by'] = uid
    updates['updated_at'] = now_ts
    email_templates_repo.update_doc(app_ctx.db, template_id, updates)
    return {'id': template_id, 'updated_fields': sorted(key for key in updates if key not in {'updated_by', 'updated_at'})}


def bulk_operation(app_ctx, request):
    payload = app_ctx.get_json_body(request)
    operation = str(payload.get('operation') or '').strip()
    required = 'email:template:delete' if operation == 'delete' else 'email:template:write'
    if operation == 'export':
        required = 'email:template:read'
    decoded_token, error = app_ctx.require_admin(request, required)
    if error:
        return error
    if operation not in BULK_OPERATIONS:
        return app_ctx.jsonify({'error': 'Invalid bulk operation'}), 400
    template_ids = payload.get('templateIds')
    if not isinstance(template_ids, list) or not template_ids:
        return app_ctx.jsonify({'error': 'templateIds must be a non-empty list'}), 400
    if len(template_ids) > MAX_BULK_TEMPLATES:
        return app_ctx.jsonify({'error': f'At most {MAX_BULK_TEMPLATES} templates per bulk operation'}), 400

    data = payload.get('data') if isinstance(payload.get('data'), dict) else {}
    uid = decoded_token.get('uid', '')
    now_ts = app_ctx.time.time()
    results = []
    errors = []
    for template_id in template_ids:
        template_id = str(template_id)
        template = _load_template(app_ctx, template_id)
        if template is None:
            errors.append({'id': template_id, 'error': 'Template not found'})
            continue
        try:
            if operation in {'activate', 'deactivate'}:
                results.append(_bulk_set_active(app_ctx, template_id, template, operation == 'activate', uid, now_ts))
            elif operation == 'delete':
                results.append(_bulk_delete(app_ctx, template_id, template, now_ts))
            elif operation == 'duplicate':
                results.append(_bulk_duplicate(app_ctx, template_id, template, uid, now_ts))
            elif operation == 'export':
                results.append(_serialize(template_id, template))
            elif operation == 'update_metadata':
                results.append(_bulk_update_metadata(app_ctx, template_id, data, uid, now_ts))
            else:
                validation = template_utils.validate_template_content(template)
                results.append(dict(validation, id=template_id))
        except ValueError as e:
            errors.append({'id': template_id, 'error': str(e)})
        except Exception as e:
            app_ctx.logger.error(f"Bulk {operation} failed for template {template_id}: {e}")
            errors.append({'id': template_id, 'error': 'Operation failed'})

    app_ctx.record_audit_event(request, decoded_token, 'bulk_operation', 'email_template', details={
        'operation': operation,
        'template_ids': [str(item) for item in template_ids],
        'processed_count': len(results),
        'error_count': len(errors),
    })
    response = {
        'success': not errors,
        'message': f'Bulk {operation} processed {len(results)} of {len(template_ids)} templates',
        'processedCount': len(results),
    }
    if errors:
        response['errors'] = errors
    if operation == 'export':
        response['results'] = {'exported_at': now_ts, 'templates': results}
    elif results:
        response['results'] = results
    return app_ctx.jsonify(response)
