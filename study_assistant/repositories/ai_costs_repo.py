"""Firestore accessors for AI cost records."""


def add_cost_record(db, payload):
    return db.collection('ai_costs').add(payload)
