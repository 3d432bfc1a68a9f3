from linguaflow_admin.repositories.query_utils import apply_equals, apply_range, apply_where, docs_to_dicts


class _FilterCapableQuery:
    def __init__(self):
        self.kwargs = None

    def where(self, *args, **kwargs):
        self.kwargs = kwargs
        return self


class _PositionalOnlyQuery:
    def __init__(self):
        self.calls = []

    def where(self, *args, **kwargs):
        if "filter" in kwargs:
            raise TypeError("filter keyword unsupported")
        self.calls.append(args)
        return self


class _Doc:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    def to_dict(self):
        return self._data


def test_apply_where_prefers_field_filter_keyword():
    query = _FilterCapableQuery()

    result = apply_where(query, "uid", "==", "u123")

    assert result is query
    assert query.kwargs is not None
    assert "filter" in query.kwargs


def test_apply_where_falls_back_to_positional_for_simple_test_doubles():
    query = _PositionalOnlyQuery()

    result = apply_where(query, "uid", "==", "u123")

    assert result is query
    assert query.calls == [("uid", "==", "u123")]


def test_apply_equals_skips_empty_values():
    query = _PositionalOnlyQuery()

    apply_equals(query, {"user_id": "u1", "action": None, "resource": ""})

    assert query.calls == [("user_id", "==", "u1")]


def test_apply_range_adds_only_given_bounds():
    query = _PositionalOnlyQuery()

    apply_range(query, "timestamp", start=10, end=None)

    assert query.calls == [("timestamp", ">=", 10)]


def test_docs_to_dicts_adds_document_ids():
    records = docs_to_dicts([_Doc("a", {"title": "x"}), _Doc("b", None)])

    assert records == [{"title": "x", "id": "a"}, {"id": "b"}]
