from study_assistant.repositories.query_utils import apply_where, stream_dicts, where_document


class _FilterCapableQuery:
    def __init__(self):
        self.kwargs = None

    def where(self, *args, **kwargs):
        self.kwargs = kwargs
        return self


class _PositionalOnlyQuery:
    def __init__(self):
        self.args = None

    def where(self, *args, **kwargs):
        if "filter" in kwargs:
            raise TypeError("filter keyword unsupported")
        self.args = args
        return self


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
    assert query.args == ("uid", "==", "u123")


def test_where_document_scopes_by_owner(fake_db):
    fake_db.collection("flashcards").document("c1").set({"document_id": "d1", "uid": "u1", "question": "q1"})
    fake_db.collection("flashcards").document("c2").set({"document_id": "d1", "uid": "u2", "question": "q2"})
    fake_db.collection("flashcards").document("c3").set({"document_id": "d2", "uid": "u1", "question": "q3"})

    rows = stream_dicts(where_document(fake_db, "flashcards", "d1", "u1"))

    assert [row["id"] for row in rows] == ["c1"]
    assert len(stream_dicts(where_document(fake_db, "flashcards", "d1"))) == 2
