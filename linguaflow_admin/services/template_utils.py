"""Placeholder substitution, sample data and HTML checks for email templates."""

import html as html_lib
import re

PLACEHOLDER_RE = re.compile(r'\{\{([^}]+)\}\}')
SCRIPT_BLOCK_RE = re.compile(r'<(script|iframe|object|embed)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
DANGLING_TAG_RE = re.compile(r'<(script|iframe|object|embed)\b[^>]*/?>', re.IGNORECASE)
EVENT_HANDLER_RE = re.compile(r'\s+on[a-z]+\s*=\s*(?:"[^"]*"|\'[^\']*\'|[^\s>]+)', re.IGNORECASE)
URL_ATTR_RE = re.compile(r'(\s(?:href|src))\s*=\s*("[^"]*"|\'[^\']*\'|[^\s>]+)', re.IGNORECASE)
WHITESPACE_RE = re.compile(r'\s+')
SCRIPT_URL_SCHEMES = ('javascript:', 'vbscript:')
TAG_RE = re.compile(r'<(/?)([a-zA-Z][a-zA-Z0-9]*)\b[^>]*?(/?)>')
VOID_TAGS = {
    'area', 'base', 'br', 'col', 'embed', 'hr', 'img', 'input',
    'link', 'meta', 'param', 'source', 'track', 'wbr',
}

BASE_SAMPLE_DATA = {
    'user_name': 'John Doe',
    'user_email': 'john.doe@example.com',
    'platform_name': 'LinguaFlow',
    'support_email': 'support@linguaflow.com',
}
SAMPLE_DATA_BY_TYPE = {
    'welcome': {
        'login_url': 'https://app.linguaflow.com/login',
    },
    'lesson_reminder': {
        'lesson_title': 'Advanced English Conversation',
        'lesson_date': 'March 15, 2024',
        'lesson_time': '2:00 PM EST',
    },
    'password_reset': {
        'reset_url': 'https://app.linguaflow.com/reset-password?token=abc123',
        'expiry_time': '24 hours',
    },
}


def extract_placeholders(text):
    if not text:
        return []
    return sorted({match.strip() for match in PLACEHOLDER_RE.findall(text) if match.strip()})


def replace_placeholders(text, params):
    """Substitute ``{{key}}`` tokens; unknown or null keys are left verbatim."""
    if not text:
        return text
    params = params or {}

    def _sub(match):
        value = params.get(match.group(1).strip())
        return match.group(0) if value is None else str(value)

    return PLACEHOLDER_RE.sub(_sub, text)


def find_unresolved_placeholders(*texts):
    unresolved = set()
    for text in texts:
        unresolved.update(extract_placeholders(text))
    return sorted(unresolved)


def get_sample_data(template_type):
    data = dict(BASE_SAMPLE_DATA)
    data.update(SAMPLE_DATA_BY_TYPE.get(template_type, {}))
    return data


def _is_script_url(value):
    raw = value.strip()
    if raw[:1] in {'"', "'"}:
        raw = raw[1:-1]
    # Browsers ignore embedded whitespace and decode entities before resolving the scheme.
    normalized = WHITESPACE_RE.sub('', html_lib.unescape(raw)).lower()
    return normalized.startswith(SCRIPT_URL_SCHEMES)


def _neutralize_url(match):
    if _is_script_url(match.group(2)):
        return f'{match.group(1)}="#"'
    return match.group(0)


def sanitize_html(html):
    if not html:
        return html
    cleaned = SCRIPT_BLOCK_RE.sub('', html)
    cleaned = DANGLING_TAG_RE.sub('', cleaned)
    cleaned = EVENT_HANDLER_RE.sub('', cleaned)
    cleaned = URL_ATTR_RE.sub(_neutralize_url, cleaned)
    return cleaned


def check_unclosed_tags(html):
    stack = []
    unclosed = set()
    for closing, name, self_closing in TAG_RE.findall(html or ''):
        tag = name.lower()
        if tag in VOID_TAGS or self_closing:
            continue
        if not closing:
            stack.append(tag)
            continue
        if tag in stack:
            # Pop back to the matching opener; anything above it was never closed.
            while stack:
                opened = stack.pop()
                if opened == tag:
                    break
                unclosed.add(opened)
    return sorted(unclosed.union(stack))


def validate_template_content(template):
    errors = []
    warnings = []
    subject = str(template.get('subject') or '').strip()
    html = str(template.get('html_content') or '').strip()
    if not subject:
        errors.append('Subject is required')
    if not html:
        errors.append('HTML content is required')

    unclosed = check_unclosed_tags(html)
    if unclosed:
        warnings.append(f"Unclosed HTML tags: {', '.join(unclosed)}")

    declared = set(template.get('placeholders') or [])
    used = find_unresolved_placeholders(subject, html, template.get('text_content') or '')
    undefined = [name for name in used if name not in declared]
    if undefined:
        warnings.append(f"Undefined placeholders: {', '.join(undefined)}")

    return {'is_valid': not errors, 'errors': errors, 'warnings': warnings}
