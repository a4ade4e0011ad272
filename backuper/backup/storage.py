"""
S3-compatible object storage for backup archives.

Archives are stored flat in the bucket, keyed by their file name, so a
series of backups is addressed by its name prefix. Cloudflare R2 is the
default target; any S3 endpoint can be used through ``endpoint_url``.
"""

import os
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError


# Files above this size are sent with multipart upload so the deadline
# can be checked between parts.
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class StorageTimeout(StorageError):
    """Raised when a storage operation exceeds its deadline."""
    pass


class Deadline:
    """
    Time budget for a group of storage calls.

    Storage methods send every network request through ``run()``, which
    refuses to start once the budget is spent and stops waiting for a
    request that outlives it.
    """

    def __init__(self, seconds: float, operation: str = 'operation', clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self.operation = operation
        self._clock = clock
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def check(self):
        if self.expired:
            raise StorageTimeout(f"{self.operation} exceeded its {self.seconds:g}s time budget")

    def run(self, func, *args, **kwargs):
        """
        Call func in a worker thread and wait at most the remaining budget.

        On expiry the request is abandoned: the worker is left to finish or
        fail on its own and the caller gets StorageTimeout right away.

        Raises:
            StorageTimeout: If the budget is spent before or during the call
        """
        self.check()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='storage-request')
        future = executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=self.remaining())
        except FutureTimeout:
            future.cancel()
            raise StorageTimeout(f"{self.operation} exceeded its {self.seconds:g}s time budget")
        finally:
            executor.shutdown(wait=False)


def _within(deadline: Optional[Deadline], func, *args, **kwargs):
    if deadline is None:
        return func(*args, **kwargs)
    return deadline.run(func, *args, **kwargs)


@dataclass(frozen=True)
class RetentionRecord:
    """Metadata view of a stored archive."""

    name: str
    last_modified: datetime
    size: int


def r2_endpoint(account_id: str) -> str:
    return f"https://{account_id}.r2.cloudflarestorage.com"


class S3Storage:
    """
    Handler for uploading backups to an S3-compatible bucket.

    Uploads archives under their file name and exposes them through
    ``{public_url}/{filename}``.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        public_url: str,
        endpoint_url: Optional[str] = None,
        region: str = 'auto',
        connect_timeout: float = 10,
        read_timeout: float = 60
    ):
        """
        Initialize storage handler.

        Args:
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            public_url: Public base URI used to build download links
            endpoint_url: S3 endpoint (None means AWS)
            region: Region name ('auto' for R2)
            connect_timeout: Socket connect timeout per request, in seconds
            read_timeout: Socket read timeout per request, in seconds
        """
        self.bucket_name = bucket_name
        self.public_base_url = public_url.rstrip('/')
        self.endpoint_url = endpoint_url

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url,
                config=BotoConfig(
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={'max_attempts': 3, 'mode': 'standard'}
                )
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @classmethod
    def from_settings(cls, settings) -> 'S3Storage':
        """
        Build a storage handler from the ``cloudflare`` settings section.

        Args:
            settings: CloudFlareSettings instance
        """
        endpoint_url = settings.endpoint_url or r2_endpoint(settings.account_id)
        return cls(
            access_key=settings.access_key_id,
            secret_key=settings.secret_key,
            bucket_name=settings.bucket,
            public_url=settings.uri,
            endpoint_url=endpoint_url
        )

    def public_url(self, name: str) -> str:
        return f"{self.public_base_url}/{name}"

    def upload(self, local_path: str, deadline: Optional[Deadline] = None) -> str:
        """
        Upload archive to the bucket.

        Args:
            local_path: Path to local archive file
            deadline: Optional time budget, checked before every request

        Returns:
            Public URL of the uploaded file

        Raises:
            StorageTimeout: If the deadline expires
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = os.path.basename(local_path)

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, key, deadline)
            else:
                self._simple_upload(local_path, key, file_size, deadline)

            if deadline:
                deadline.check()
            return self.public_url(key)

        except StorageError:
            raise
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"Upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload: {e}")

    def _simple_upload(self, local_path: str, key: str, file_size: int, deadline: Optional[Deadline] = None):
        """
        Upload file using a single streamed put_object.

        Args:
            local_path: Path to local file
            key: Object key
            file_size: Size of file in bytes
            deadline: Optional time budget bounding the whole request
        """
        # Leaving the with block on timeout closes the body under the worker
        with open(local_path, 'rb') as f:
            _within(
                deadline,
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=f,
                ContentLength=file_size
            )

    def _multipart_upload(self, local_path: str, key: str, deadline: Optional[Deadline] = None):
        """
        Upload large file using multipart upload, checking the deadline per part.

        Args:
            local_path: Path to local file
            key: Object key
            deadline: Optional time budget
        """
        response = _within(
            deadline,
            self.s3_client.create_multipart_upload,
            Bucket=self.bucket_name,
            Key=key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    if deadline:
                        deadline.check()

                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = _within(
                        deadline,
                        self.s3_client.upload_part,
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            _within(
                deadline,
                self.s3_client.complete_multipart_upload,
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            # Abort multipart upload on error or timeout
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError):
                pass
            raise

    def delete(self, name: str, deadline: Optional[Deadline] = None):
        """
        Delete an object from the bucket.

        Args:
            name: Object key to delete
            deadline: Optional time budget

        Raises:
            StorageTimeout: If the deadline expired before the request
            StorageError: If deletion fails
        """
        if deadline:
            deadline.check()

        try:
            _within(
                deadline,
                self.s3_client.delete_object,
                Bucket=self.bucket_name,
                Key=name
            )
        except StorageError:
            raise
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"Delete failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete file {name}: {e}")

    def list_objects(self, prefix: str, deadline: Optional[Deadline] = None) -> List[RetentionRecord]:
        """
        List objects whose key starts with prefix.

        Records are returned in listing order; callers sort as needed.

        Args:
            prefix: Key prefix to filter by
            deadline: Optional time budget, checked before every page

        Returns:
            List of RetentionRecord

        Raises:
            StorageTimeout: If the deadline expires
            StorageError: If listing fails
        """
        try:
            records = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            pages = iter(paginator.paginate(Bucket=self.bucket_name, Prefix=prefix))
            while True:
                if deadline:
                    deadline.check()
                page = _within(deadline, next, pages, None)
                if page is None:
                    break
                for obj in page.get('Contents', []):
                    records.append(RetentionRecord(
                        name=obj['Key'],
                        last_modified=obj['LastModified'],
                        size=obj['Size']
                    ))

            return records

        except StorageError:
            raise
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"List failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list files: {e}")

    def test_connection(self) -> bool:
        """
        Test connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"Connection test failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to connect to storage: {e}")
