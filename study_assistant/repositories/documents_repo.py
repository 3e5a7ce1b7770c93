"""Firestore accessors for the documents collection."""

from .query_utils import apply_where, stream_dicts

COLLECTION = 'documents'


def doc_ref(db, document_id):
    return db.collection(COLLECTION).document(document_id)


def create_doc_ref(db):
    return db.collection(COLLECTION).document()


def get_doc(db, document_id):
    return doc_ref(db, document_id).get()


def set_doc(db, document_id, data, merge=False):
    return doc_ref(db, document_id).set(data, merge=merge)


def update_doc(db, document_id, updates):
    return doc_ref(db, document_id).update(updates)


def delete_doc(db, document_id):
    return doc_ref(db, document_id).delete()


def list_by_uid(db, uid, limit=500):
    query = apply_where(db.collection(COLLECTION), 'uid', '==', uid)
    if isinstance(limit, int) and limit > 0:
        query = query.limit(limit)
    return stream_dicts(query)


def find_by_youtube_video(db, uid, video_id):
    query = apply_where(apply_where(db.collection(COLLECTION), 'uid', '==', uid), 'youtube_video_id', '==', video_id)
    return stream_dicts(query.limit(1))


def count_by_type_since(db, uid, file_type, since_ts):
    query = apply_where(db.collection(COLLECTION), 'uid', '==', uid)
    query = apply_where(query, 'file_type', '==', file_type)
    query = apply_where(query, 'created_at', '>=', since_ts)
    return len(list(query.stream()))
