from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Protocol
import io
import shutil

BYTE_CHUNK_SIZE = 16384


class ObjectStoreError(RuntimeError):
    """Raised when an object store operation fails."""


class ObjectStore(Protocol):
    def init(self, config: dict[str, str]) -> None:
        ...

    def put_object(self, bucket: str, key: str, body: BinaryIO) -> None:
        ...

    def get_object(self, bucket: str, key: str) -> BinaryIO:
        ...

    def list_common_prefixes(self, bucket: str, delimiter: str) -> list[str]:
        ...

    def list_objects(self, bucket: str, prefix: str) -> list[str]:
        ...

    def delete_object(self, bucket: str, key: str) -> None:
        ...

    def create_signed_url(self, bucket: str, key: str, ttl: timedelta) -> str:
        ...


@dataclass(frozen=True)
class Empty:
    pass


@dataclass(frozen=True)
class InitRequest:
    config: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PutObjectRequest:
    bucket: str
    key: str
    body: bytes


@dataclass(frozen=True)
class GetObjectRequest:
    bucket: str
    key: str


@dataclass(frozen=True)
class Bytes:
    data: bytes


@dataclass(frozen=True)
class ListCommonPrefixesRequest:
    bucket: str
    delimiter: str


@dataclass(frozen=True)
class ListCommonPrefixesResponse:
    prefixes: list[str]


@dataclass(frozen=True)
class ListObjectsRequest:
    bucket: str
    prefix: str


@dataclass(frozen=True)
class ListObjectsResponse:
    keys: list[str]


@dataclass(frozen=True)
class DeleteObjectRequest:
    bucket: str
    key: str


@dataclass(frozen=True)
class CreateSignedURLRequest:
    bucket: str
    key: str
    ttl_seconds: float


@dataclass(frozen=True)
class CreateSignedURLResponse:
    url: str


class StreamReader(io.RawIOBase):
    """Readable binary stream fed by a ``receive`` callable that returns chunks.

    ``receive`` returns an empty bytes object at end of stream.
    """

    def __init__(self, receive: Callable[[], bytes], close: Callable[[], None] | None = None) -> None:
        super().__init__()
        self._receive = receive
        self._close = close
        self._buffer = b""
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: memoryview) -> int:  # type: ignore[override]
        while not self._buffer and not self._eof:
            chunk = self._receive()
            if not chunk:
                self._eof = True
                break
            self._buffer = bytes(chunk)

        size = min(len(buffer), len(self._buffer))
        buffer[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._close is not None:
                self._close()
        finally:
            super().close()


class ObjectStoreStreamServer:
    """Server side of the streaming transport; forwards calls to an ObjectStore."""

    def __init__(self, impl: ObjectStore) -> None:
        self.impl = impl

    def init(self, request: InitRequest) -> Empty:
        self.impl.init(dict(request.config))
        return Empty()

    def put_object(self, requests: Iterator[PutObjectRequest]) -> Empty:
        iterator = iter(requests)
        # Bucket and key travel on every chunk; the first one names the object.
        first_chunk = next(iterator, None)
        if first_chunk is None:
            raise ObjectStoreError("put_object stream ended before the first chunk")

        pending: list[bytes] = [first_chunk.body]

        def receive() -> bytes:
            if pending:
                return pending.pop()
            chunk = next(iterator, None)
            return chunk.body if chunk is not None else b""

        self.impl.put_object(first_chunk.bucket, first_chunk.key, io.BufferedReader(StreamReader(receive)))
        return Empty()

    def get_object(self, request: GetObjectRequest) -> Iterator[Bytes]:
        with self.impl.get_object(request.bucket, request.key) as reader:
            while True:
                chunk = reader.read(BYTE_CHUNK_SIZE)
                if not chunk:
                    return
                yield Bytes(data=chunk)

    def list_common_prefixes(self, request: ListCommonPrefixesRequest) -> ListCommonPrefixesResponse:
        return ListCommonPrefixesResponse(prefixes=self.impl.list_common_prefixes(request.bucket, request.delimiter))

    def list_objects(self, request: ListObjectsRequest) -> ListObjectsResponse:
        return ListObjectsResponse(keys=self.impl.list_objects(request.bucket, request.prefix))

    def delete_object(self, request: DeleteObjectRequest) -> Empty:
        self.impl.delete_object(request.bucket, request.key)
        return Empty()

    def create_signed_url(self, request: CreateSignedURLRequest) -> CreateSignedURLResponse:
        url = self.impl.create_signed_url(request.bucket, request.key, timedelta(seconds=request.ttl_seconds))
        return CreateSignedURLResponse(url=url)


class ObjectStoreStreamClient:
    """ObjectStore implementation that talks to an ObjectStoreStreamServer-shaped stub."""

    def __init__(self, stub: ObjectStoreStreamServer, *, chunk_size: int = BYTE_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.stub = stub
        self.chunk_size = chunk_size

    def init(self, config: dict[str, str]) -> None:
        self.stub.init(InitRequest(config=dict(config)))

    def put_object(self, bucket: str, key: str, body: BinaryIO) -> None:
        def requests() -> Iterator[PutObjectRequest]:
            sent = False
            while True:
                chunk = body.read(self.chunk_size)
                if not chunk:
                    break
                sent = True
                yield PutObjectRequest(bucket=bucket, key=key, body=chunk)
            if not sent:
                yield PutObjectRequest(bucket=bucket, key=key, body=b"")

        response = self.stub.put_object(requests())
        if not isinstance(response, Empty):
            raise ObjectStoreError(f"put_object for {bucket}/{key} was not acknowledged by the server")

    def get_object(self, bucket: str, key: str) -> BinaryIO:
        responses = iter(self.stub.get_object(GetObjectRequest(bucket=bucket, key=key)))

        def receive() -> bytes:
            chunk = next(responses, None)
            return chunk.data if chunk is not None else b""

        def close() -> None:
            closer = getattr(responses, "close", None)
            if closer is not None:
                closer()

        return io.BufferedReader(StreamReader(receive, close))

    def list_common_prefixes(self, bucket: str, delimiter: str) -> list[str]:
        return list(self.stub.list_common_prefixes(ListCommonPrefixesRequest(bucket=bucket, delimiter=delimiter)).prefixes)

    def list_objects(self, bucket: str, prefix: str) -> list[str]:
        return list(self.stub.list_objects(ListObjectsRequest(bucket=bucket, prefix=prefix)).keys)

    def delete_object(self, bucket: str, key: str) -> None:
        self.stub.delete_object(DeleteObjectRequest(bucket=bucket, key=key))

    def create_signed_url(self, bucket: str, key: str, ttl: timedelta) -> str:
        response = self.stub.create_signed_url(
            CreateSignedURLRequest(bucket=bucket, key=key, ttl_seconds=ttl.total_seconds())
        )
        if not response.url:
            raise ObjectStoreError(f"object store returned an empty signed URL for {bucket}/{key}")
        return response.url


class FilesystemObjectStore:
    """ObjectStore backed by a local directory; each bucket is a sub-directory of ``root``."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root

    def init(self, config: dict[str, str]) -> None:
        root = config.get("root") or (str(self.root) if self.root is not None else "")
        if not root.strip():
            raise ObjectStoreError("filesystem object store requires a 'root' directory")
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    def put_object(self, bucket: str, key: str, body: BinaryIO) -> None:
        path = self._object_path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        partial_path = path.with_name(f".{path.name}.partial")
        try:
            with partial_path.open("wb") as file_handle:
                shutil.copyfileobj(body, file_handle, BYTE_CHUNK_SIZE)
            partial_path.replace(path)
        except OSError as error:
            partial_path.unlink(missing_ok=True)
            raise ObjectStoreError(f"unable to write {bucket}/{key}: {error}") from error

    def get_object(self, bucket: str, key: str) -> BinaryIO:
        path = self._object_path(bucket, key)
        if not path.is_file():
            raise ObjectStoreError(f"object {bucket}/{key} does not exist")
        return path.open("rb")

    def list_common_prefixes(self, bucket: str, delimiter: str) -> list[str]:
        if not delimiter:
            raise ObjectStoreError("delimiter is required")
        prefixes = {
            key.split(delimiter, 1)[0] + delimiter
            for key in self.list_objects(bucket, "")
            if delimiter in key
        }
        return sorted(prefixes)

    def list_objects(self, bucket: str, prefix: str) -> list[str]:
        bucket_path = self._bucket_path(bucket)
        if not bucket_path.is_dir():
            return []
        keys = []
        for path in bucket_path.rglob("*"):
            if not path.is_file() or path.name.endswith(".partial"):
                continue
            key = path.relative_to(bucket_path).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    def delete_object(self, bucket: str, key: str) -> None:
        path = self._object_path(bucket, key)
        try:
            path.unlink()
        except FileNotFoundError as error:
            raise ObjectStoreError(f"object {bucket}/{key} does not exist") from error

        bucket_path = self._bucket_path(bucket)
        parent = path.parent
        while parent != bucket_path and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent

    def create_signed_url(self, bucket: str, key: str, ttl: timedelta) -> str:
        if ttl.total_seconds() <= 0:
            raise ObjectStoreError("signed URL ttl must be positive")
        path = self._object_path(bucket, key)
        if not path.is_file():
            raise ObjectStoreError(f"object {bucket}/{key} does not exist")
        expires = int(datetime.now(tz=UTC).timestamp() + ttl.total_seconds())
        return f"{path.resolve().as_uri()}?expires={expires}"

    def _bucket_path(self, bucket: str) -> Path:
        if self.root is None:
            raise ObjectStoreError("filesystem object store is not initialized")
        if not bucket or "/" in bucket or bucket in {".", ".."}:
            raise ObjectStoreError(f"invalid bucket name: {bucket!r}")
        return self.root / bucket

    def _object_path(self, bucket: str, key: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in {".", ".."} for part in parts):
            raise ObjectStoreError(f"invalid object key: {key!r}")
        return self._bucket_path(bucket).joinpath(*parts)


OBJECT_STORE_PROVIDERS: dict[str, Callable[[], ObjectStore]] = {
    "filesystem": FilesystemObjectStore,
}
TRANSPORT_DIRECT = "direct"
TRANSPORT_STREAM = "stream"


def new_object_store(provider: str, config: dict[str, str], transport: str = TRANSPORT_DIRECT) -> ObjectStore:
    """Build and initialize an object store, optionally behind the chunked stream transport."""
    factory = OBJECT_STORE_PROVIDERS.get(provider.strip().lower())
    if factory is None:
        supported = ", ".join(sorted(OBJECT_STORE_PROVIDERS))
        raise ObjectStoreError(f"unsupported object store provider {provider!r} (supported: {supported})")

    store: ObjectStore = factory()
    if transport == TRANSPORT_STREAM:
        store = ObjectStoreStreamClient(ObjectStoreStreamServer(store))
    elif transport != TRANSPORT_DIRECT:
        raise ObjectStoreError(f"unsupported object store transport {transport!r}")

    store.init(config)
    return store
