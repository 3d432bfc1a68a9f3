import pytest

from linguaflow_admin.services import template_utils


def test_extract_placeholders_returns_sorted_unique_names():
    text = "Hi {{ user_name }}, welcome to {{platform_name}}. Bye {{user_name}}"

    assert template_utils.extract_placeholders(text) == ["platform_name", "user_name"]


def test_replace_placeholders_leaves_unknown_tokens():
    result = template_utils.replace_placeholders("Hi {{user_name}} {{missing}}", {"user_name": "Ana"})

    assert result == "Hi Ana {{missing}}"


def test_find_unresolved_placeholders_spans_texts():
    assert template_utils.find_unresolved_placeholders("{{a}}", None, "{{b}} {{a}}") == ["a", "b"]


def test_sample_data_by_type():
    welcome = template_utils.get_sample_data("welcome")
    reminder = template_utils.get_sample_data("lesson_reminder")

    assert welcome["platform_name"] == "LinguaFlow"
    assert "login_url" in welcome
    assert {"lesson_title", "lesson_date", "lesson_time"} <= set(reminder)
    assert "login_url" not in template_utils.get_sample_data("custom")


def test_sanitize_html_strips_active_content():
    html = (
        '<p onclick="steal()">Hi</p><script>alert(1)</script>'
        '<a href="javascript:alert(2)">x</a><iframe src="//evil"></iframe>'
    )

    cleaned = template_utils.sanitize_html(html)

    assert "<script" not in cleaned
    assert "<iframe" not in cleaned
    assert "onclick" not in cleaned
    assert "javascript:" not in cleaned
    assert '<a href="#">x</a>' in cleaned


@pytest.mark.parametrize(
    "html",
    [
        "<a href=\"javascript:alert('x')\">x</a>",
        '<a href="javascript: steal()">x</a>',
        "<a href='  JavaScript:run(1, 2)'>x</a>",
        '<a href="java\tscript:alert(1)">x</a>',
        '<a href="javascript&#58;alert(1)">x</a>',
        "<img src=javascript:alert(1)>",
        '<a href="vbscript:msgbox(1)">x</a>',
    ],
)
def test_sanitize_html_neutralizes_script_urls_with_quotes_and_spaces(html):
    cleaned = template_utils.sanitize_html(html)

    assert "script:" not in cleaned.lower().replace("\t", "")
    assert "script&#58;" not in cleaned
    assert '="#"' in cleaned


def test_sanitize_html_keeps_regular_links():
    html = '<a href="https://linguaflow.com/help?topic=javascript">Help</a><img src="/logo.png">'

    assert template_utils.sanitize_html(html) == html


def test_check_unclosed_tags_ignores_void_elements():
    assert template_utils.check_unclosed_tags("<div><p>text<br><img src='x'></div>") == ["p"]
    assert template_utils.check_unclosed_tags("<p>ok</p>") == []


def test_validate_template_content_errors_and_warnings():
    result = template_utils.validate_template_content({
        "subject": "Hello {{user_name}}",
        "html_content": "<div>{{user_name}} {{unknown}}",
        "placeholders": ["user_name"],
    })

    assert result["is_valid"] is True
    assert "Unclosed HTML tags: div" in result["warnings"]
    assert "Undefined placeholders: unknown" in result["warnings"]

    missing = template_utils.validate_template_content({})
    assert missing["errors"] == ["Subject is required", "HTML content is required"]
