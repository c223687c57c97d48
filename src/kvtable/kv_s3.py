"""S3 key-value backend: one object per key, tombstone objects, polling watches."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from kvtable.config import KvTableConfig
from kvtable.errors import ConnectionFailureError
from kvtable.kv import KvEntry, Operation, literal_prefix, match_pattern, validate_key

logger = logging.getLogger(__name__)

_HeadState = tuple[str, str]


def _is_not_found(err: Exception) -> bool:
    if isinstance(err, ClientError):
        code = err.response.get("Error", {}).get("Code", "")
        return code in {"NoSuchKey", "404", "NotFound"}
    return False


def _next_revision() -> int:
    return time.time_ns()


class S3Watcher:
    """Polls one key's object state and yields an entry whenever it changes."""

    def __init__(
        self,
        store: S3KeyValue,
        key: str,
        *,
        interval: float,
        initial: _HeadState | None,
    ) -> None:
        self._store = store
        self.key = key
        self._interval = interval
        self._last = initial
        self._stopped = False
        self._wake = asyncio.Event()

    def stop(self) -> None:
        self._stopped = True
        self._wake.set()

    def __aiter__(self) -> S3Watcher:
        return self

    async def __anext__(self) -> KvEntry:
        while not self._stopped:
            state = await asyncio.to_thread(self._store._head_state, self.key)
            if state != self._last:
                self._last = state
                entry = await self._store.get(self.key)
                if entry is not None and not self._stopped:
                    return entry
                continue
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        raise StopAsyncIteration


class S3KeyValue:
    """S3-backed key-value bucket.

    Layout under the prefix:
      kv/<key>          live value, revision and operation in object metadata
      tombstones/<key>  JSON marker left by delete/purge
    """

    supports_purge = True

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str = "",
        config: KvTableConfig | None = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._config = config or KvTableConfig()

        if client is None:
            session = boto3.Session(region_name=self._config.s3_region)
            client = session.client(
                "s3",
                region_name=self._config.s3_region,
                endpoint_url=self._config.s3_endpoint_url,
                config=BotoConfig(
                    connect_timeout=self._config.s3_request_timeout_s,
                    read_timeout=self._config.s3_request_timeout_s,
                    retries={"max_attempts": self._config.s3_max_attempts, "mode": "standard"},
                ),
            )
        self._s3 = client

    # --- Key/object helpers ---

    def _k(self, rel_path: str) -> str:
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path

    def _value_key(self, key: str) -> str:
        return self._k(f"kv/{key}")

    def _tombstone_key(self, key: str) -> str:
        return self._k(f"tombstones/{key}")

    def _read_tombstone(self, key: str) -> KvEntry | None:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=self._tombstone_key(key))
            body = resp["Body"].read()
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise ConnectionFailureError("get", str(e)) from e
        except BotoCoreError as e:
            raise ConnectionFailureError("get", str(e)) from e
        try:
            marker = json.loads(body.decode("utf-8"))
            revision = int(marker.get("revision", 0))
            operation = Operation(marker.get("operation", Operation.DEL.value))
        except (UnicodeDecodeError, ValueError, TypeError, AttributeError) as e:
            # The marker object exists, so the key is deleted whatever its body says.
            logger.warning("Unreadable tombstone marker for %s: %s", key, e)
            revision, operation = 0, Operation.DEL
        return KvEntry(key=key, value=b"", revision=revision, operation=operation)

    def _get_sync(self, key: str) -> KvEntry | None:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=self._value_key(key))
            body = resp["Body"].read()
        except ClientError as e:
            if not _is_not_found(e):
                raise ConnectionFailureError("get", str(e)) from e
            return self._read_tombstone(key)
        except BotoCoreError as e:
            raise ConnectionFailureError("get", str(e)) from e
        metadata = resp.get("Metadata") or {}
        return KvEntry(
            key=key,
            value=body,
            revision=int(metadata.get("kv-revision", 0)),
            operation=Operation.PUT,
        )

    def _put_sync(self, key: str, value: bytes) -> int:
        revision = _next_revision()
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=self._value_key(key),
                Body=value,
                Metadata={"kv-revision": str(revision), "kv-operation": Operation.PUT.value},
            )
            self._s3.delete_object(Bucket=self.bucket, Key=self._tombstone_key(key))
        except (ClientError, BotoCoreError) as e:
            raise ConnectionFailureError("put", str(e)) from e
        return revision

    def _mark_sync(self, key: str, operation: Operation) -> None:
        revision = _next_revision()
        marker = json.dumps(
            {"revision": revision, "operation": operation.value},
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=self._value_key(key))
            self._s3.put_object(
                Bucket=self.bucket,
                Key=self._tombstone_key(key),
                Body=marker,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise ConnectionFailureError(operation.value.lower(), str(e)) from e

    def _list_page(self, prefix: str, token: str | None) -> tuple[list[str], str | None]:
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        if token is not None:
            kwargs["ContinuationToken"] = token
        try:
            resp = self._s3.list_objects_v2(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise ConnectionFailureError("keys", str(e)) from e
        names = [obj["Key"] for obj in resp.get("Contents", [])]
        next_token = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        return names, next_token

    def _head_state(self, key: str) -> _HeadState | None:
        for kind, object_key in (("PUT", self._value_key(key)), ("TOMB", self._tombstone_key(key))):
            try:
                resp = self._s3.head_object(Bucket=self.bucket, Key=object_key)
            except ClientError as e:
                if _is_not_found(e):
                    continue
                raise ConnectionFailureError("watch", str(e)) from e
            except BotoCoreError as e:
                raise ConnectionFailureError("watch", str(e)) from e
            return kind, str(resp.get("ETag", ""))
        return None

    # --- KeyValueProtocol ---

    async def put(self, key: str, value: bytes) -> int:
        validate_key(key)
        return await asyncio.to_thread(self._put_sync, key, bytes(value))

    async def get(self, key: str) -> KvEntry | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def delete(self, key: str) -> None:
        validate_key(key)
        await asyncio.to_thread(self._mark_sync, key, Operation.DEL)

    async def purge(self, key: str) -> None:
        validate_key(key)
        await asyncio.to_thread(self._mark_sync, key, Operation.PURGE)

    async def keys(self, pattern: str | None = None) -> AsyncIterator[str]:
        root = self._value_key("")
        list_prefix = root + literal_prefix(pattern)
        token: str | None = None
        while True:
            names, token = await asyncio.to_thread(self._list_page, list_prefix, token)
            for name in names:
                key = name[len(root) :]
                if pattern is None or match_pattern(pattern, key):
                    yield key
            if token is None:
                break

    async def watch(self, key: str) -> S3Watcher:
        initial = await asyncio.to_thread(self._head_state, key)
        logger.debug(
            "Polling s3://%s/%s every %ss", self.bucket, key, self._config.watch_poll_interval_sec
        )
        return S3Watcher(
            self,
            key,
            interval=self._config.watch_poll_interval_sec,
            initial=initial,
        )

    async def close(self) -> None:
        close = getattr(self._s3, "close", None)
        if close is not None:
            await asyncio.to_thread(close)

    def storage_info(self) -> dict[str, object]:
        return {
            "backend": "s3",
            "bucket": self.bucket,
            "prefix": self.prefix,
            "endpoint_url": self._config.s3_endpoint_url,
        }
