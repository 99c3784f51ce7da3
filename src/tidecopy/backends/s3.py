# src/tidecopy/backends/s3.py
"""
S3-compatible backend built on aiobotocore.

botocore errors are translated into the tidecopy error taxonomy at this
boundary, so nothing above it needs to understand S3 error codes.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    HTTPClientError,
    IncompleteReadError,
    NoCredentialsError,
    ReadTimeoutError,
    ResponseStreamingError,
)

from tidecopy.backends.base import BackendClient, Page
from tidecopy.capabilities import OperationKind
from tidecopy.exceptions import (
    AuthError,
    NotFound,
    TidecopyError,
    TransientNetworkError,
    TransferError,
    UnsupportedOperation,
)
from tidecopy.locator import Backend
from tidecopy.models import IfExists, ObjectDescriptor

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)

# S3 rejects multipart parts smaller than 5 MiB, except the last one.
MIN_PART_SIZE: int = 5 * 1024 * 1024
DEFAULT_PART_SIZE: int = 8 * 1024 * 1024
DEFAULT_CHUNK_SIZE: int = 1024 * 1024
# Largest object a single CopyObject request accepts.
MAX_COPY_OBJECT_SIZE: int = 5 * 1024 * 1024 * 1024
# S3 allows at most this many parts per multipart upload.
MAX_PARTS: int = 10_000

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}
_AUTH_CODES = {
    "401",
    "403",
    "AccessDenied",
    "AllAccessDisabled",
    "ExpiredToken",
    "InvalidAccessKeyId",
    "InvalidToken",
    "SignatureDoesNotMatch",
}
_TRANSIENT_CODES = {
    "InternalError",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
}


def translate_error(exc: Exception, what: str) -> TidecopyError:
    """
    Maps a botocore exception onto the tidecopy error taxonomy.

    Args:
        exc (Exception): The exception raised by aiobotocore.
        what (str): A short description of the failed operation.

    Returns:
        TidecopyError: The translated error, to be raised `from exc`.
    """
    if isinstance(exc, ClientError):
        error: Dict[str, Any] = exc.response.get("Error", {})
        code: str = str(error.get("Code", ""))
        status: int = exc.response.get("ResponseMetadata", {}).get(
            "HTTPStatusCode", 0
        )
        message: str = f"{what}: {code} - {error.get('Message', exc)}"
        if code in _NOT_FOUND_CODES or status == 404:
            return NotFound(message)
        if code in _AUTH_CODES or status in (401, 403):
            return AuthError(message)
        if code in _TRANSIENT_CODES or status >= 500:
            return TransientNetworkError(message)
        return TransferError(message)
    if isinstance(exc, NoCredentialsError):
        return AuthError(f"{what}: {exc}")
    # A body cut off mid-stream surfaces as ResponseStreamingError or
    # IncompleteReadError rather than a connection error.
    if isinstance(
        exc,
        (
            ConnectionClosedError,
            ConnectTimeoutError,
            EndpointConnectionError,
            HTTPClientError,
            IncompleteReadError,
            ReadTimeoutError,
            ResponseStreamingError,
        ),
    ):
        return TransientNetworkError(f"{what}: {exc}")
    return TransferError(f"{what}: {exc}")


def _require_overwrite(if_exists: IfExists) -> None:
    # A check-then-write against S3 would race with other writers.
    if if_exists is not IfExists.OVERWRITE:
        raise UnsupportedOperation(Backend.S3, if_exists)


class S3Sink:
    """
    A `ByteSink` uploading to S3.

    Small objects are sent with a single PutObject on commit. Once the buffer
    exceeds `part_size` the sink switches to a multipart upload so memory use
    stays bounded by one part.
    """

    offset: int = 0

    def __init__(
        self,
        client: "S3Client",
        bucket: str,
        key: str,
        part_size: int = DEFAULT_PART_SIZE,
    ) -> None:
        self._client: "S3Client" = client
        self._bucket: str = bucket
        self._key: str = key
        self._part_size: int = max(part_size, MIN_PART_SIZE)
        self._buffer: bytearray = bytearray()
        self._upload_id: Optional[str] = None
        self._parts: List[Dict[str, Any]] = []

    async def _flush_part(self, data: bytes) -> None:
        try:
            if self._upload_id is None:
                response: Dict[str, Any] = await self._client.create_multipart_upload(
                    Bucket=self._bucket, Key=self._key
                )
                self._upload_id = response["UploadId"]
            part_number: int = len(self._parts) + 1
            part: Dict[str, Any] = await self._client.upload_part(
                Bucket=self._bucket,
                Key=self._key,
                UploadId=self._upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"Upload part of '{self._key}'") from e
        self._parts.append({"ETag": part["ETag"], "PartNumber": part_number})

    async def write(self, data: bytes) -> None:
        self._buffer.extend(data)
        while len(self._buffer) >= self._part_size:
            chunk: bytes = bytes(self._buffer[: self._part_size])
            del self._buffer[: self._part_size]
            await self._flush_part(chunk)

    async def commit(self) -> None:
        if self._upload_id is None:
            try:
                await self._client.put_object(
                    Bucket=self._bucket,
                    Key=self._key,
                    Body=bytes(self._buffer),
                    ContentLength=len(self._buffer),
                )
            except (BotoCoreError, ClientError) as e:
                raise translate_error(e, f"Put '{self._key}'") from e
            self._buffer.clear()
            return

        if self._buffer:
            await self._flush_part(bytes(self._buffer))
            self._buffer.clear()
        try:
            await self._client.complete_multipart_upload(
                Bucket=self._bucket,
                Key=self._key,
                UploadId=self._upload_id,
                MultipartUpload={"Parts": self._parts},
            )
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"Complete upload of '{self._key}'") from e

    async def abort(self, keep_partial: bool = False) -> None:
        self._buffer.clear()
        if self._upload_id is None:
            return
        try:
            await self._client.abort_multipart_upload(
                Bucket=self._bucket, Key=self._key, UploadId=self._upload_id
            )
        except (BotoCoreError, ClientError) as e:
            # Lifecycle rules reap orphaned uploads; the original error matters more.
            logger.warning(f"Could not abort multipart upload for '{self._key}': {e}")
        finally:
            self._upload_id = None
            self._parts.clear()


class S3ObjectClient:
    """`BackendClient` for one bucket of an S3-compatible service."""

    supports_range_reads: bool = True
    supports_offset_writes: bool = False

    def __init__(
        self,
        client: "S3Client",
        bucket: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        part_size: int = DEFAULT_PART_SIZE,
        endpoint: Optional[str] = None,
    ) -> None:
        """
        Args:
            client (S3Client): An open aiobotocore S3 client.
            bucket (str): The bucket all keys refer to.
            chunk_size (int): Read size used when streaming an object.
            part_size (int): Multipart upload part size.
            endpoint (str, optional): The service endpoint, None for AWS.
                Server-side copies only happen between equal endpoints.
        """
        self._client: "S3Client" = client
        self._bucket: str = bucket
        self._chunk_size: int = chunk_size
        self._part_size: int = part_size
        self.endpoint: Optional[str] = endpoint

    @property
    def bucket(self) -> str:
        return self._bucket

    async def list_page(
        self, prefix: str, continuation_token: Optional[str], page_size: int
    ) -> Page:
        params: Dict[str, Any] = {
            "Bucket": self._bucket,
            "Prefix": prefix,
            "MaxKeys": page_size,
        }
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        try:
            response: Dict[str, Any] = await self._client.list_objects_v2(**params)
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"List 's3://{self._bucket}/{prefix}'") from e

        descriptors: List[ObjectDescriptor] = [
            ObjectDescriptor(
                key=obj["Key"],
                size=obj["Size"],
                etag=obj.get("ETag", "").strip('"'),
                last_modified=obj.get("LastModified"),
            )
            for obj in response.get("Contents", [])
        ]
        next_token: Optional[str] = (
            response.get("NextContinuationToken")
            if response.get("IsTruncated")
            else None
        )
        return descriptors, next_token

    async def open_read(self, key: str, offset: int = 0) -> AsyncIterator[bytes]:
        params: Dict[str, Any] = {"Bucket": self._bucket, "Key": key}
        if offset:
            params["Range"] = f"bytes={offset}-"
        try:
            response: Dict[str, Any] = await self._client.get_object(**params)
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"Get 's3://{self._bucket}/{key}'") from e

        body = response["Body"]
        try:
            while True:
                try:
                    chunk: bytes = await body.read(self._chunk_size)
                except (BotoCoreError, ClientError) as e:
                    raise translate_error(e, f"Read 's3://{self._bucket}/{key}'") from e
                except (ConnectionError, TimeoutError, asyncio.TimeoutError) as e:
                    raise TransientNetworkError(
                        f"Read 's3://{self._bucket}/{key}': {e}"
                    ) from e
                if not chunk:
                    break
                yield chunk
        finally:
            body.close()

    async def open_write(
        self, key: str, offset: int = 0, if_exists: IfExists = IfExists.OVERWRITE
    ) -> S3Sink:
        _require_overwrite(if_exists)
        if offset:
            logger.debug(f"S3 cannot append to '{key}', restarting from zero.")
        return S3Sink(self._client, self._bucket, key, self._part_size)

    def can_copy_from(self, source: BackendClient) -> bool:
        """Whether `copy_from` can serve objects held by `source`."""
        return isinstance(source, S3ObjectClient) and source.endpoint == self.endpoint

    async def copy_from(
        self,
        source: BackendClient,
        source_key: str,
        key: str,
        size: int,
        if_exists: IfExists = IfExists.OVERWRITE,
    ) -> None:
        """
        Copies an object within the service, without downloading it.

        Objects up to 5 GiB take a single CopyObject request. Larger ones are
        copied range by range into a multipart upload with UploadPartCopy.

        Args:
            source (BackendClient): The client holding the source object.
            source_key (str): The key of the source object.
            key (str): The destination key in this client's bucket.
            size (int): The size of the source object in bytes.
            if_exists (IfExists): Only OVERWRITE is supported.

        Raises:
            UnsupportedOperation: If `source` is not on the same endpoint.
        """
        _require_overwrite(if_exists)
        if not isinstance(source, S3ObjectClient) or not self.can_copy_from(source):
            raise UnsupportedOperation(Backend.S3, OperationKind.REMOTE_COPY)
        copy_source: Dict[str, str] = {"Bucket": source.bucket, "Key": source_key}
        what: str = f"Copy 's3://{source.bucket}/{source_key}' to '{key}'"
        if size <= MAX_COPY_OBJECT_SIZE:
            try:
                await self._client.copy_object(
                    Bucket=self._bucket, Key=key, CopySource=copy_source
                )
            except (BotoCoreError, ClientError) as e:
                raise translate_error(e, what) from e
            return
        await self._copy_multipart(copy_source, key, size, what)

    async def _copy_multipart(
        self, copy_source: Dict[str, str], key: str, size: int, what: str
    ) -> None:
        part_size: int = max(self._part_size, MIN_PART_SIZE, -(-size // MAX_PARTS))
        try:
            response: Dict[str, Any] = await self._client.create_multipart_upload(
                Bucket=self._bucket, Key=key
            )
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, what) from e
        upload_id: str = response["UploadId"]

        parts: List[Dict[str, Any]] = []
        try:
            for number, start in enumerate(range(0, size, part_size), start=1):
                end: int = min(start + part_size, size) - 1
                part: Dict[str, Any] = await self._client.upload_part_copy(
                    Bucket=self._bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=number,
                    CopySource=copy_source,
                    CopySourceRange=f"bytes={start}-{end}",
                )
                parts.append(
                    {"ETag": part["CopyPartResult"]["ETag"], "PartNumber": number}
                )
            await self._client.complete_multipart_upload(
                Bucket=self._bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException as e:
            try:
                await self._client.abort_multipart_upload(
                    Bucket=self._bucket, Key=key, UploadId=upload_id
                )
            except (BotoCoreError, ClientError) as abort_error:
                logger.warning(
                    f"Could not abort multipart copy for '{key}': {abort_error}"
                )
            if isinstance(e, (BotoCoreError, ClientError)):
                raise translate_error(e, what) from e
            raise

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"Delete 's3://{self._bucket}/{key}'") from e

    async def close(self) -> None:
        # The underlying client is owned by the exit stack that created it.
        return None
