"""Data access for student discussion topics."""

import time

from linguaflow_admin.repositories import discussion_repo
from linguaflow_admin.repositories.query_utils import docs_to_dicts

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 500
UPDATABLE_FIELDS = {'title', 'description', 'level', 'category'}

PREDEFINED_TOPICS = [
    ('predefined-1', 'Food & Cooking', 'Discuss favorite foods, cooking experiences, and culinary traditions', 'lifestyle'),
    ('predefined-2', 'Travel & Tourism', 'Share travel experiences and dream destinations', 'lifestyle'),
    ('predefined-3', 'Technology & Innovation', 'Explore the impact of technology on daily life', 'technology'),
    ('predefined-4', 'Work & Career', 'Discuss professional experiences and career goals', 'professional'),
    ('predefined-5', 'Hobbies & Interests', 'Share personal interests and leisure activities', 'lifestyle'),
]


class TopicValidationError(ValueError):
    pass


def _require_ids(student_id, tutor_id):
    if not student_id or not tutor_id:
        raise TopicValidationError('Student ID and Tutor ID are required')


def _validate_text(title, description):
    title = str(title or '').strip()
    if not title:
        raise TopicValidationError('Topic title is required')
    if len(title) > MAX_TITLE_LENGTH:
        raise TopicValidationError('Topic title must be less than 200 characters')
    if description is not None:
        description = str(description).strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise TopicValidationError('Topic description must be less than 500 characters')
    return title, description


def get_topics_by_student(db, student_id, tutor_id):
    _require_ids(student_id, tutor_id)
    return docs_to_dicts(discussion_repo.list_docs(db, student_id, tutor_id))


def get_topics_by_level(db, student_id, tutor_id, level):
    _require_ids(student_id, tutor_id)
    if not level:
        raise TopicValidationError('Level is required')
    return docs_to_dicts(discussion_repo.list_docs(db, student_id, tutor_id, level=level))


def get_predefined_topics(level, now_ts=None):
    if not level:
        raise TopicValidationError('Level is required')
    now_ts = now_ts if now_ts is not None else time.time()
    return [
        {
            'id': topic_id,
            'title': title,
            'description': description,
            'category': category,
            'level': level,
            'is_custom': False,
            'student_id': None,
            'tutor_id': None,
            'created_at': now_ts,
            'updated_at': now_ts,
        }
        for topic_id, title, description, category in PREDEFINED_TOPICS
    ]


def create_custom_topic(db, student_id, tutor_id, title, level='intermediate', description=None, now_ts=None):
    _require_ids(student_id, tutor_id)
    title, description = _validate_text(title, description)
    now_ts = now_ts if now_ts is not None else time.time()
    ref = discussion_repo.new_doc_ref(db)
    topic = {
        'student_id': student_id,
        'tutor_id': tutor_id,
        'title': title,
        'description': description,
        'category': 'custom',
        'level': level or 'intermediate',
        'is_custom': True,
        'created_at': now_ts,
        'updated_at': now_ts,
    }
    ref.set(topic)
    topic['id'] = ref.id
    return topic


def get_topic_by_id(db, topic_id):
    snapshot = discussion_repo.get_doc(db, topic_id)
    if not snapshot.exists:
        return None
    topic = snapshot.to_dict() or {}
    topic['id'] = snapshot.id
    return topic


def update_topic(db, topic_id, updates, now_ts=None):
    changes = {key: value for key, value in (updates or {}).items() if key in UPDATABLE_FIELDS}
    if not changes:
        raise TopicValidationError('No valid fields to update')
    if 'title' in changes or 'description' in changes:
        existing = get_topic_by_id(db, topic_id) or {}
        title, description = _validate_text(
            changes.get('title', existing.get('title')),
            changes.get('description', existing.get('description')),
        )
        if 'title' in changes:
            changes['title'] = title
        if 'description' in changes:
            changes['description'] = description
    changes['updated_at'] = now_ts if now_ts is not None else time.time()
    discussion_repo.update_doc(db, topic_id, changes)
    return get_topic_by_id(db, topic_id)


def delete_topic(db, topic_id):
    discussion_repo.delete_doc(db, topic_id)


def search_topics(db, student_id, tutor_id, term):
    needle = str(term or '').strip().lower()
    topics = get_topics_by_student(db, student_id, tutor_id)
    if not needle:
        return topics
    return [topic for topic in topics if needle in str(topic.get('title', '')).lower()]


def topic_exists(db, student_id, tutor_id, title):
    wanted = str(title or '').strip().lower()
    if not wanted:
        return False
    return any(
        str(topic.get('title', '')).strip().lower() == wanted
        for topic in get_topics_by_student(db, student_id, tutor_id)
    )
