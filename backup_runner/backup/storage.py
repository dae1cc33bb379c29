"""
Storage handlers for database dumps.

Supports:
- S3Storage: Upload, list and batch-delete on any S3-compatible service
- LocalStorage: Keep a local copy of successful dumps
"""

import os
import shutil
from pathlib import Path
from typing import List

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import ClientError, BotoCoreError

from .retention import StoredObject, DELETE_BATCH_SIZE


# Multipart above 100MB, 10MB parts
TRANSFER_CONFIG = TransferConfig(
    multipart_threshold=100 * 1024 * 1024,
    multipart_chunksize=10 * 1024 * 1024
)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for one destination bucket.

    Credentials, region and endpoint are passed to the client only when
    non-empty, otherwise boto3's own resolution applies.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str = '',
        secret_key: str = '',
        region: str = '',
        endpoint: str = ''
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket: Bucket name
            access_key: Access key ID
            secret_key: Secret access key
            region: Region name
            endpoint: Endpoint URL for non-AWS services
        """
        self.bucket = bucket
        self.region = region
        self.endpoint = endpoint

        client_kwargs = {}
        if access_key:
            client_kwargs['aws_access_key_id'] = access_key
        if secret_key:
            client_kwargs['aws_secret_access_key'] = secret_key
        if region:
            client_kwargs['region_name'] = region
        if endpoint:
            client_kwargs['endpoint_url'] = endpoint

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @classmethod
    def for_destination(cls, destination) -> 'S3Storage':
        return cls(
            bucket=destination.bucket,
            access_key=destination.access_key,
            secret_key=destination.secret_key,
            region=destination.region,
            endpoint=destination.endpoint
        )

    def uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key.lstrip('/')}"

    def upload(self, local_path: str, key: str) -> str:
        """
        Upload a local file to key.

        Returns:
            Key of uploaded object

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = key.lstrip('/')

        try:
            self.s3_client.upload_file(local_path, self.bucket, key, Config=TRANSFER_CONFIG)
            return key

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

    def list_objects(self, prefix: str) -> List[StoredObject]:
        """
        List objects under prefix.

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix.lstrip('/')):
                for obj in page.get('Contents', []):
                    objects.append(StoredObject(
                        key=obj['Key'],
                        last_modified=obj['LastModified'],
                        size=obj.get('Size', 0),
                        etag=obj.get('ETag', '').strip('"')
                    ))

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed: {e}")

    def delete_objects(self, keys: List[str]):
        """
        Delete one batch of keys.

        Raises:
            StorageError: If the batch is too large or any key fails to delete
        """
        if not keys:
            return
        if len(keys) > DELETE_BATCH_SIZE:
            raise StorageError(f"Cannot delete {len(keys)} keys in one request (max {DELETE_BATCH_SIZE})")

        try:
            response = self.s3_client.delete_objects(
                Bucket=self.bucket,
                Delete={
                    'Objects': [{'Key': key} for key in keys],
                    'Quiet': True
                }
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 delete failed: {e}")

        errors = response.get('Errors', [])
        if errors:
            first = errors[0]
            raise StorageError(
                f"S3 delete failed for {len(errors)} of {len(keys)} keys "
                f"(first: {first.get('Key')}: {first.get('Code')} {first.get('Message', '')})"
            )


class LocalStorage:
    """
    Handler for keeping copies of dumps in a local directory.

    Layout: {base_path}/{database}/{filename}
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

    def is_available(self) -> bool:
        """Local copies are only kept when the directory already exists."""
        return self.base_path.is_dir()

    def store(self, source_path: str, relative_path: str) -> str:
        """
        Move a file into local storage.

        Returns:
            Full path of stored file

        Raises:
            StorageError: If the move fails
        """
        dest_path = self.base_path / relative_path

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(source_path, dest_path)
            return str(dest_path)

        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")
