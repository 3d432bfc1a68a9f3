"""Server-side persistence for vocabulary study sessions and progress."""

import logging
import random
import string
import time

from linguaflow_admin.repositories import vocabulary_repo

logger = logging.getLogger('linguaflow_admin')

SESSION_RECOVERY_TIMEOUT_SECONDS = 24 * 60 * 60
RECOVERY_CANDIDATES = 3
MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 1.0
REQUIRED_SESSION_FIELDS = ('id', 'student_id', 'start_time', 'current_position', 'words')
REQUIRED_WORD_FIELDS = ('word', 'pronunciation', 'part_of_speech', 'definition')


class VocabularySessionError(ValueError):
    pass


def generate_session_id(now_ts=None):
    now_ms = int((now_ts if now_ts is not None else time.time()) * 1000)
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f'vocab_session_{now_ms}_{suffix}'


def validate_session_data(session):
    """Return a list of problems; an empty list means the session is usable."""
    if not isinstance(session, dict):
        return ['Session must be an object']
    problems = [f'Missing field: {name}' for name in REQUIRED_SESSION_FIELDS if session.get(name) in (None, '')]
    words = session.get('words')
    if not isinstance(words, list):
        problems.append('words must be a list')
        return problems
    for index, word in enumerate(words):
        if not isinstance(word, dict):
            problems.append(f'words[{index}] must be an object')
            continue
        missing = [name for name in REQUIRED_WORD_FIELDS if not word.get(name)]
        sentences = word.get('example_sentences')
        if not isinstance(sentences, list) or not sentences:
            missing.append('example_sentences')
        if missing:
            problems.append(f"words[{index}] missing: {', '.join(missing)}")
    position = session.get('current_position')
    if isinstance(position, bool) or not isinstance(position, int):
        problems.append('current_position must be an integer')
    elif position < 0 or position > len(words):
        problems.append('current_position is out of range')
    return problems


def with_retry(operation, max_retries=MAX_RETRIES, base_delay=RETRY_BASE_DELAY_SECONDS, sleep_fn=time.sleep):
    attempt = 0
    while True:
        try:
            return operation()
        except VocabularySessionError:
            raise
        except Exception as e:
            if attempt >= max_retries:
                raise
            delay = base_delay * (2 ** attempt) + random.random()
            logger.info(f"Retrying vocabulary operation in {delay:.1f}s after error: {e}")
            sleep_fn(delay)
            attempt += 1


def save_session(db, session, now_ts=None, sleep_fn=time.sleep):
    problems = validate_session_data(session)
    if problems:
        raise VocabularySessionError('; '.join(problems))
    now_ts = now_ts if now_ts is not None else time.time()
    payload = {
        'id': session['id'],
        'student_id': session['student_id'],
        'start_time': session['start_time'],
        'current_position': session['current_position'],
        'words': session['words'],
        'is_active': bool(session.get('is_active', True)),
        'updated_at': now_ts,
    }
    if session.get('tutor_id'):
        payload['tutor_id'] = str(session['tutor_id'])
    with_retry(lambda: vocabulary_repo.set_session(db, session['id'], payload, merge=True), sleep_fn=sleep_fn)
    return payload


def load_session(db, session_id):
    snapshot = vocabulary_repo.get_session_doc(db, session_id)
    if not snapshot.exists:
        return None
    data = snapshot.to_dict() or {}
    data.setdefault('id', snapshot.id)
    return data


def recover_session(db, student_id, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    for doc in vocabulary_repo.list_active_sessions(db, student_id, RECOVERY_CANDIDATES):
        data = doc.to_dict() or {}
        data.setdefault('id', doc.id)
        if now_ts - float(data.get('updated_at', 0) or 0) >= SESSION_RECOVERY_TIMEOUT_SECONDS:
            continue
        if validate_session_data(data):
            logger.info(f"Skipping unrecoverable vocabulary session {doc.id}")
            continue
        return data
    return None


def end_session(db, session_id, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    vocabulary_repo.update_session(db, session_id, {'is_active': False, 'ended_at': now_ts, 'updated_at': now_ts})


def save_progress(db, student_id, progress, now_ts=None, sleep_fn=time.sleep):
    now_ts = now_ts if now_ts is not None else time.time()
    position = progress.get('last_position', 0)
    if isinstance(position, bool) or not isinstance(position, int) or position < 0:
        raise VocabularySessionError('last_position must be a non-negative integer')
    payload = {
        'student_id': student_id,
        'last_session_id': progress.get('last_session_id'),
        'last_position': position,
        'last_access_time': now_ts,
        'total_words_studied': int(progress.get('total_words_studied', position + 1) or 0),
        'session_duration': int(progress.get('session_duration', 0) or 0),
        'updated_at': now_ts,
    }
    with_retry(lambda: vocabulary_repo.set_progress(db, student_id, payload, merge=True), sleep_fn=sleep_fn)
    return payload


def get_progress(db, student_id):
    snapshot = vocabulary_repo.get_progress_doc(db, student_id)
    if not snapshot.exists:
        return None
    return snapshot.to_dict() or {}
