"""Binary storage for uploaded documents.

Both stores expose the same small contract: ``put(data, file_name,
content_type) -> key``, ``get(key) -> bytes`` and ``delete(key)``.
"""

import logging
import os
import uuid

import boto3
from botocore.exceptions import ClientError

from study_assistant.errors import NotFoundError

logger = logging.getLogger(__name__)

LOCAL_DOCUMENTS_DIR = 'documents'


class LocalBlobStore:
    """Stores blobs on local disk under ``<upload_folder>/documents``."""

    def __init__(self, upload_folder):
        self.root = os.path.abspath(os.path.join(upload_folder, LOCAL_DOCUMENTS_DIR))

    def _ensure_root(self):
        os.makedirs(self.root, exist_ok=True)

    def normalize_key(self, raw_key):
        key = str(raw_key or '').strip().replace('\\', '/')
        if not key:
            return ''
        key = os.path.normpath(key).replace('\\', '/')
        while key.startswith('./'):
            key = key[2:]
        if key.startswith('/') or key == '.' or key.startswith('../') or '/..' in key:
            return ''
        if not key.startswith(f'{LOCAL_DOCUMENTS_DIR}/'):
            return ''
        return key

    def resolve_path(self, raw_key):
        key = self.normalize_key(raw_key)
        if not key:
            return ''
        relative_path = key[len(f'{LOCAL_DOCUMENTS_DIR}/'):]
        absolute_path = os.path.abspath(os.path.join(self.root, relative_path))
        if not absolute_path.startswith(self.root + os.sep):
            return ''
        return absolute_path

    def put(self, data, file_name, content_type='application/octet-stream'):
        self._ensure_root()
        key = f"{LOCAL_DOCUMENTS_DIR}/{uuid.uuid4().hex}_{file_name}"
        path = self.resolve_path(key)
        if not path:
            raise ValueError(f'Invalid blob file name: {file_name!r}')
        with open(path, 'wb') as handle:
            handle.write(data)
        return key

    def get(self, key):
        path = self.resolve_path(key)
        if not path or not os.path.exists(path):
            raise NotFoundError('Document file not found', error_code='BLOB_NOT_FOUND', context={'key': key})
        with open(path, 'rb') as handle:
            return handle.read()

    def delete(self, key):
        path = self.resolve_path(key)
        if not path:
            return False
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False


class S3BlobStore:
    def __init__(self, bucket, region, prefix='documents', client=None):
        self.bucket = bucket
        self.region = region
        self.prefix = prefix.strip('/')
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('s3', region_name=self.region)
        return self._client

    def build_key(self, file_name):
        return f"{self.prefix}/{uuid.uuid4()}-{file_name}"

    def put(self, data, file_name, content_type='application/octet-stream'):
        key = self.build_key(file_name)
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        logger.info(f"S3 upload success: {key} ({len(data)} bytes)")
        return key

    def get(self, key):
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get('Error', {}).get('Code', '')
            if code in {'NoSuchKey', '404'}:
                raise NotFoundError('Document file not found', error_code='BLOB_NOT_FOUND', context={'key': key}) from exc
            raise
        return response['Body'].read()

    def delete(self, key):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            logger.error(f"S3 delete failed for {key}: {exc}")
            return False


def build_blob_store(config):
    if config.blob_backend == 's3':
        return S3BlobStore(config.s3_bucket, config.s3_region, config.s3_prefix)
    return LocalBlobStore(config.upload_folder)
