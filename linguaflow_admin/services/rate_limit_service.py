"""Admin API rate limiting: Firestore fixed windows with an in-memory fallback."""

import hashlib
import re

from linguaflow_admin.repositories import rate_limit_repo

KEY_PART_RE = re.compile(r'[^a-z0-9_.:@-]+')


def build_key(scope, identity, max_len=120):
    raw = str(identity or '').strip().lower()
    safe = KEY_PART_RE.sub('_', raw)[:max_len] or 'anon'
    return f"{scope}:{safe}"


def window_bounds(now_ts, window_seconds):
    window_start = int(now_ts // window_seconds) * int(window_seconds)
    retry_after = max(1, int((window_start + window_seconds) - now_ts))
    return window_start, retry_after


def window_counter_id(key, window_seconds, window_start):
    raw = f"{key}|{window_seconds}|{int(window_start)}".encode('utf-8')
    return hashlib.sha256(raw).hexdigest()


def check_rate_limit_firestore(key, limit, window_seconds, now_ts, *, db, firestore_module, counter_collection, logger=None):
    """Return ``(allowed, retry_after)``, or None when Firestore cannot be used."""
    if db is None or firestore_module is None:
        return None
    try:
        window_start, retry_after = window_bounds(now_ts, window_seconds)
        counter_ref = rate_limit_repo.counter_doc_ref(
            db, counter_collection, window_counter_id(key, window_seconds, window_start)
        )

        @firestore_module.transactional
        def _txn(txn):
            snapshot = counter_ref.get(transaction=txn)
            count = int((snapshot.to_dict() or {}).get('count', 0) or 0) if snapshot.exists else 0
            if count >= limit:
                return False, retry_after
            txn.set(counter_ref, {
                'key': key,
                'count': count + 1,
                'window_start': window_start,
                'window_seconds': int(window_seconds),
                'updated_at': now_ts,
                'expires_at': window_start + (window_seconds * 3),
            }, merge=True)
            return True, 0

        return _txn(db.transaction())
    except Exception as exc:
        if logger is not None:
            logger.info(f"⚠️ Firestore rate limit unavailable, using in-memory window: {exc}")
        return None


def check_rate_limit_memory(key, limit, window_seconds, now_ts, *, events, lock):
    with lock:
        cutoff = now_ts - window_seconds
        kept = [ts for ts in events.get(key, []) if ts >= cutoff]
        if len(kept) >= limit:
            events[key] = kept
            return False, max(1, int((kept[0] + window_seconds) - now_ts))
        kept.append(now_ts)
        events[key] = kept
    return True, 0


def check_rate_limit(
    key,
    limit,
    window_seconds,
    *,
    firestore_enabled,
    db,
    firestore_module,
    counter_collection,
    in_memory_events,
    in_memory_lock,
    time_module,
    logger=None,
):
    now_ts = time_module.time()
    if firestore_enabled:
        result = check_rate_limit_firestore(
            key,
            limit,
            window_seconds,
            now_ts,
            db=db,
            firestore_module=firestore_module,
            counter_collection=counter_collection,
            logger=logger,
        )
        if result is not None:
            return result
    return check_rate_limit_memory(key, limit, window_seconds, now_ts, events=in_memory_events, lock=in_memory_lock)


def prune_memory_events(events, lock, now_ts, max_window_seconds):
    with lock:
        stale = [key for key, stamps in events.items() if not stamps or stamps[-1] < now_ts - max_window_seconds]
        for key in stale:
            events.pop(key, None)
    return len(stale)


def cleanup_expired_counters(db, counter_collection, now_ts):
    if db is None:
        return 0
    return rate_limit_repo.delete_expired_counters(db, counter_collection, now_ts)
