"""Shared Firestore query helpers.

Filters go through the keyword ``FieldFilter`` form first. Simple test doubles
that only accept positional ``where`` arguments get the positional form.
"""

from google.cloud.firestore_v1.base_query import FieldFilter


def apply_where(query, field_path, op_string, value):
    try:
        return query.where(filter=FieldFilter(field_path, op_string, value))
    except TypeError:
        return query.where(field_path, op_string, value)


def where_document(db, collection_name, document_id, uid=None):
    query = apply_where(db.collection(collection_name), 'document_id', '==', document_id)
    if uid:
        query = apply_where(query, 'uid', '==', uid)
    return query


def stream_dicts(query):
    rows = []
    for snapshot in query.stream():
        data = snapshot.to_dict() or {}
        data.setdefault('id', snapshot.id)
        rows.append(data)
    return rows
