"""Firestore accessors for generated artifacts.

Summaries and notes are single documents keyed by the parent document id;
flashcards and quiz questions are one Firestore document per item.
"""

from .query_utils import stream_dicts, where_document

SUMMARIES = 'summaries'
NOTES = 'notes'
FLASHCARDS = 'flashcards'
QUIZ_QUESTIONS = 'quiz_questions'


def set_summary(db, document_id, payload):
    return db.collection(SUMMARIES).document(document_id).set(payload)


def get_summary(db, document_id):
    snapshot = db.collection(SUMMARIES).document(document_id).get()
    return snapshot.to_dict() if snapshot.exists else None


def set_notes(db, document_id, payload):
    return db.collection(NOTES).document(document_id).set(payload)


def get_notes(db, document_id):
    snapshot = db.collection(NOTES).document(document_id).get()
    return snapshot.to_dict() if snapshot.exists else None


def add_items(db, collection_name, items):
    batch = db.batch()
    ids = []
    for item in items:
        ref = db.collection(collection_name).document()
        batch.set(ref, dict(item, id=ref.id))
        ids.append(ref.id)
    batch.commit()
    return ids


def get_item(db, collection_name, item_id):
    snapshot = db.collection(collection_name).document(item_id).get()
    if not snapshot.exists:
        return None
    data = snapshot.to_dict() or {}
    data.setdefault('id', snapshot.id)
    return data


def update_item(db, collection_name, item_id, updates):
    return db.collection(collection_name).document(item_id).update(updates)


def list_items(db, collection_name, document_id, uid=None):
    rows = stream_dicts(where_document(db, collection_name, document_id, uid))
    rows.sort(key=lambda row: (row.get('position', 0), row.get('created_at', 0)))
    return rows


def delete_items(db, collection_name, document_id, uid=None):
    snapshots = list(where_document(db, collection_name, document_id, uid).stream())
    if not snapshots:
        return 0
    batch = db.batch()
    for snapshot in snapshots:
        batch.delete(snapshot.reference)
    batch.commit()
    return len(snapshots)


def replace_items(db, collection_name, document_id, uid, items):
    """Swap every existing item of a document for ``items`` in a single batch commit."""
    snapshots = list(where_document(db, collection_name, document_id, uid).stream())
    batch = db.batch()
    for snapshot in snapshots:
        batch.delete(snapshot.reference)
    for item in items:
        ref = db.collection(collection_name).document()
        batch.set(ref, dict(item, id=ref.id))
    batch.commit()
    return len(snapshots)


def delete_all_for_document(db, document_id):
    removed = {}
    for name in (SUMMARIES, NOTES):
        ref = db.collection(name).document(document_id)
        existed = ref.get().exists
        ref.delete()
        removed[name] = 1 if existed else 0
    for name in (FLASHCARDS, QUIZ_QUESTIONS):
        removed[name] = delete_items(db, name, document_id)
    return removed
