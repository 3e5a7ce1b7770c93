"""Firestore accessors for pipeline job logs."""


def set_job_log(db, job_id, payload):
    return db.collection('job_logs').document(job_id).set(payload)


def get_job_log(db, job_id):
    snapshot = db.collection('job_logs').document(job_id).get()
    return snapshot.to_dict() if snapshot.exists else None
