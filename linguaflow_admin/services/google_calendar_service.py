"""Google Calendar OAuth linking and cached calendar event access."""

import logging
import secrets
import time
from urllib.parse import urlencode

import requests

from linguaflow_admin.repositories import calendar_repo
from linguaflow_admin.repositories.query_utils import docs_to_dicts

logger = logging.getLogger('linguaflow_admin')

GOOGLE_AUTH_URL = 'https://accounts.google.com/o/oauth2/v2/auth'
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
GOOGLE_USERINFO_URL = 'https://www.googleapis.com/oauth2/v2/userinfo'
GOOGLE_CHANNEL_STOP_URL = 'https://www.googleapis.com/calendar/v3/channels/stop'
CALENDAR_SCOPES = (
    'https://www.googleapis.com/auth/calendar.readonly',
    'https://www.googleapis.com/auth/userinfo.email',
)
OAUTH_STATE_TTL_SECONDS = 10 * 60
REFRESH_MARGIN_SECONDS = 5 * 60
HTTP_TIMEOUT_SECONDS = 10


class OAuthError(Exception):
    pass


def build_oauth_url(client_id, redirect_uri, state, login_hint=None):
    if not client_id or not redirect_uri:
        raise OAuthError('Google OAuth is not configured')
    params = {
        'client_id': client_id,
        'redirect_uri': redirect_uri,
        'response_type': 'code',
        'scope': ' '.join(CALENDAR_SCOPES),
        'access_type': 'offline',
        'prompt': 'consent',
        'state': state,
    }
    if login_hint:
        params['login_hint'] = login_hint
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def create_oauth_state(db, tutor_id, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    state = secrets.token_urlsafe(24)
    calendar_repo.set_oauth_state(db, state, {
        'tutor_id': tutor_id,
        'created_at': now_ts,
        'expires_at': now_ts + OAUTH_STATE_TTL_SECONDS,
    })
    return state


def consume_oauth_state(db, state, now_ts=None):
    """Resolve a callback ``state`` to its tutor id; states are single-use."""
    now_ts = now_ts if now_ts is not None else time.time()
    if not state:
        raise OAuthError('Missing OAuth state')
    data = calendar_repo.claim_oauth_state(db, state)
    if data is None:
        raise OAuthError('Invalid OAuth state')
    if float(data.get('expires_at', 0) or 0) < now_ts:
        raise OAuthError('OAuth state has expired')
    return data.get('tutor_id', '')


def _post_token_request(http, payload, failure_label):
    """POST to the token endpoint; transport and decoding failures surface as OAuthError."""
    try:
        response = http.post(GOOGLE_TOKEN_URL, data=payload, timeout=HTTP_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise OAuthError(f'{failure_label}: {e}') from e
    if response.status_code != 200:
        raise OAuthError(f'{failure_label}: {response.text[:200]}')
    try:
        tokens = response.json() or {}
    except ValueError as e:
        raise OAuthError(f'{failure_label}: invalid JSON response') from e
    if not isinstance(tokens, dict):
        raise OAuthError(f'{failure_label}: unexpected response body')
    return tokens


def exchange_code_for_tokens(code, client_id, client_secret, redirect_uri, http=requests, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    tokens = _post_token_request(http, {
        'code': code,
        'client_id': client_id,
        'client_secret': client_secret,
        'redirect_uri': redirect_uri,
        'grant_type': 'authorization_code',
    }, 'Token exchange failed')
    if not tokens.get('access_token') or not tokens.get('refresh_token'):
        raise OAuthError('Google did not return both access and refresh tokens')

    email = None
    try:
        profile = http.get(
            GOOGLE_USERINFO_URL,
            headers={'Authorization': f"Bearer {tokens['access_token']}"},
            timeout=HTTP_TIMEOUT_SECONDS,
        )
        if profile.status_code == 200:
            email = (profile.json() or {}).get('email')
    except (requests.RequestException, ValueError) as e:
        logger.info(f"⚠️ Could not fetch Google account email: {e}")

    return {
        'access_token': tokens['access_token'],
        'refresh_token': tokens['refresh_token'],
        'expires_at': now_ts + int(tokens.get('expires_in', 3600) or 3600),
        'scope': tokens.get('scope', ' '.join(CALENDAR_SCOPES)),
        'email': email,
    }


def refresh_access_token(refresh_token, client_id, client_secret, http=requests, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    tokens = _post_token_request(http, {
        'refresh_token': refresh_token,
        'client_id': client_id,
        'client_secret': client_secret,
        'grant_type': 'refresh_token',
    }, 'Token refresh failed')
    if not tokens.get('access_token'):
        raise OAuthError('Google did not return an access token')
    return {
        'access_token': tokens['access_token'],
        'expires_at': now_ts + int(tokens.get('expires_in', 3600) or 3600),
    }


def store_tokens(db, tutor_id, token_data, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    payload = {
        'tutor_id': tutor_id,
        'access_token': token_data['access_token'],
        'refresh_token': token_data['refresh_token'],
        'expires_at': token_data['expires_at'],
        'scope': token_data.get('scope', ''),
        'email': token_data.get('email'),
        'updated_at': now_ts,
    }
    existing = calendar_repo.get_tokens_doc(db, tutor_id)
    if not existing.exists:
        payload['created_at'] = now_ts
    calendar_repo.set_tokens(db, tutor_id, payload, merge=True)
    return payload


def get_valid_access_token(db, tutor_id, client_id, client_secret, http=requests, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    snapshot = calendar_repo.get_tokens_doc(db, tutor_id)
    if not snapshot.exists:
        raise OAuthError('Google Calendar is not connected')
    data = snapshot.to_dict() or {}
    if float(data.get('expires_at', 0) or 0) - now_ts > REFRESH_MARGIN_SECONDS:
        return data['access_token']
    refreshed = refresh_access_token(data.get('refresh_token', ''), client_id, client_secret, http=http, now_ts=now_ts)
    calendar_repo.set_tokens(db, tutor_id, {
        'access_token': refreshed['access_token'],
        'expires_at': refreshed['expires_at'],
        'updated_at': now_ts,
    }, merge=True)
    return refreshed['access_token']


def is_connected(db, tutor_id):
    return calendar_repo.get_tokens_doc(db, tutor_id).exists


def get_calendar_events(db, tutor_id, start_ts=None, end_ts=None):
    return docs_to_dicts(calendar_repo.list_events(db, tutor_id, start_ts, end_ts))


def get_connection_status(db, tutor_id, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    snapshot = calendar_repo.get_tokens_doc(db, tutor_id)
    if not snapshot.exists:
        return {'connected': False}
    data = snapshot.to_dict() or {}
    webhook_status = None
    channel_expiration = data.get('channel_expiration')
    if data.get('channel_id') and isinstance(channel_expiration, (int, float)):
        webhook_status = {
            'active': channel_expiration > now_ts,
            'channel_id': data.get('channel_id'),
            'expiration': channel_expiration,
            'hours_until_expiration': round((channel_expiration - now_ts) / 3600, 2),
        }
    return {
        'connected': True,
        'email': data.get('email'),
        'last_sync': data.get('last_sync', data.get('updated_at')),
        'expires_at': data.get('expires_at'),
        'webhook_status': webhook_status,
    }


def disconnect(db, tutor_id, http=requests):
    snapshot = calendar_repo.get_tokens_doc(db, tutor_id)
    if snapshot.exists:
        data = snapshot.to_dict() or {}
        if data.get('channel_id') and data.get('resource_id'):
            try:
                http.post(
                    GOOGLE_CHANNEL_STOP_URL,
                    json={'id': data['channel_id'], 'resourceId': data['resource_id']},
                    headers={'Authorization': f"Bearer {data.get('access_token', '')}"},
                    timeout=HTTP_TIMEOUT_SECONDS,
                )
            except requests.RequestException as e:
                # Token and event removal still proceeds.
                logger.info(f"⚠️ Could not stop calendar webhook for {tutor_id}: {e}")
    calendar_repo.delete_tokens(db, tutor_id)
    deleted_events = calendar_repo.delete_events(db, tutor_id)
    return {'disconnected': True, 'deleted_events': deleted_events}
