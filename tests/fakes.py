from __future__ import annotations

import io
import stat as stat_module
from datetime import datetime, timezone
from types import SimpleNamespace

from bson import ObjectId
from botocore.exceptions import ClientError

from core.storage import DocumentStorageManager, StorageBackend
from core.storage.remote_client import RemoteTransferClient
from core.storage.remote_file_provider import RemoteFileStorageProvider


class _InsertResult:
    def __init__(self, inserted_id) -> None:
        self.inserted_id = inserted_id


class _DeleteResult:
    def __init__(self, deleted_count: int) -> None:
        self.deleted_count = deleted_count


def _matches(row: dict, filter_dict: dict) -> bool:
    return all(row.get(key) == value for key, value in filter_dict.items())


def _project(row: dict, projection: dict | None) -> dict:
    if not projection:
        return dict(row)
    return {key: row[key] for key in ["_id", *projection] if key in row}


class _Cursor:
    def __init__(self, rows: list[dict]) -> None:
        self._rows = rows

    def sort(self, keys):
        for key, direction in reversed(keys):
            self._rows.sort(key=lambda row: row.get(key, 0), reverse=direction < 0)
        return self

    def __aiter__(self):
        self._iter = iter(self._rows)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self) -> None:
        self.rows: list[dict] = []
        self.insert_failures: list[Exception] = []

    async def create_index(self, *_args, **_kwargs):
        return "ok"

    async def insert_one(self, payload: dict):
        if self.insert_failures:
            raise self.insert_failures.pop(0)
        row = dict(payload)
        row["_id"] = ObjectId()
        self.rows.append(row)
        return _InsertResult(row["_id"])

    async def find_one(self, filter_dict: dict, sort=None, projection=None):
        rows = [row for row in self.rows if _matches(row, filter_dict)]
        if sort:
            rows = _Cursor(rows).sort(sort)._rows
        if not rows:
            return None
        return _project(rows[0], projection)

    def find(self, filter_dict: dict, projection=None):
        return _Cursor([_project(row, projection) for row in self.rows if _matches(row, filter_dict)])

    def _upsert(self, filter_dict: dict, update: dict) -> dict:
        row = next((row for row in self.rows if _matches(row, filter_dict)), None)
        if row is None:
            row = {"_id": ObjectId(), **filter_dict}
            self.rows.append(row)
        for key, value in update.get("$max", {}).items():
            row[key] = max(row.get(key, value), value)
        for key, value in update.get("$inc", {}).items():
            row[key] = row.get(key, 0) + value
        return row

    async def update_one(self, filter_dict: dict, update: dict, upsert: bool = False):
        self._upsert(filter_dict, update)

    async def find_one_and_update(self, filter_dict: dict, update: dict, upsert: bool = False, return_document=None):
        return dict(self._upsert(filter_dict, update))

    async def delete_one(self, filter_dict: dict):
        for index, row in enumerate(self.rows):
            if _matches(row, filter_dict):
                del self.rows[index]
                return _DeleteResult(1)
        return _DeleteResult(0)


class FakeSFTP:
    """In-memory stand-in for paramiko.SFTPClient, rooted at the login directory."""

    def __init__(self, *, dirs: set[str] | None = None, files: dict[str, bytes] | None = None) -> None:
        self.dirs: set[str] = set(dirs or set())
        self.files: dict[str, bytes] = dict(files or {})
        self.closed = False
        self.mkdir_calls: list[str] = []
        self.fail_putfo: Exception | None = None
        self.mkdir_race: set[str] = set()
        self.truncate_writes = False
        self.stat_errors: dict[str, Exception] = {}

    def stat(self, path: str):
        if path in self.stat_errors:
            raise self.stat_errors[path]
        if path in self.dirs:
            return SimpleNamespace(st_mode=stat_module.S_IFDIR | 0o755, st_size=0)
        if path in self.files:
            return SimpleNamespace(st_mode=stat_module.S_IFREG | 0o644, st_size=len(self.files[path]))
        raise FileNotFoundError(2, "No such file", path)

    def mkdir(self, path: str, mode: int = 0o777):
        self.mkdir_calls.append(path)
        if path in self.mkdir_race:
            # another session created it a moment ago
            self.dirs.add(path)
            raise IOError("Failure")
        if path in self.dirs:
            raise IOError("Failure")
        self.dirs.add(path)

    def putfo(self, fl, remotepath: str, file_size: int = 0, callback=None, confirm: bool = True):
        if self.fail_putfo is not None:
            raise self.fail_putfo
        data = fl.read()
        if self.truncate_writes:
            data = data[:-1]
        self.files[remotepath] = data

    def posix_rename(self, oldpath: str, newpath: str):
        self.files[newpath] = self.files.pop(oldpath)

    def rename(self, oldpath: str, newpath: str):
        self.files[newpath] = self.files.pop(oldpath)

    def remove(self, path: str):
        if path not in self.files:
            raise FileNotFoundError(2, "No such file", path)
        del self.files[path]

    def getfo(self, remotepath: str, fl, callback=None):
        fl.write(self.files[remotepath])
        return len(self.files[remotepath])

    def listdir_attr(self, path: str = "."):
        if path not in self.dirs:
            raise FileNotFoundError(2, "No such file", path)
        prefix = f"{path}/"
        rows = []
        for name, data in self.files.items():
            if name.startswith(prefix) and "/" not in name[len(prefix):]:
                rows.append(
                    SimpleNamespace(
                        filename=name[len(prefix):],
                        st_size=len(data),
                        st_mode=stat_module.S_IFREG | 0o644,
                        st_mtime=1_700_000_000,
                    )
                )
        return rows

    def normalize(self, path: str) -> str:
        return "/home/portal"

    def close(self):
        self.closed = True


class FakeSSHClient:
    def __init__(self, sftp: FakeSFTP, *, connect_error: Exception | None = None) -> None:
        self._sftp = sftp
        self._connect_error = connect_error
        self.closed = False
        self.connect_kwargs: dict | None = None

    def set_missing_host_key_policy(self, policy):
        self.policy = policy

    def connect(self, **kwargs):
        self.connect_kwargs = kwargs
        if self._connect_error is not None:
            raise self._connect_error

    def open_sftp(self):
        return self._sftp

    def close(self):
        self.closed = True


class SSHFactory:
    """Hands out FakeSSHClients over one shared FakeSFTP and remembers them."""

    def __init__(self, sftp: FakeSFTP | None = None) -> None:
        self.sftp = sftp or FakeSFTP()
        self.clients: list[FakeSSHClient] = []
        self.connect_errors: list[Exception] = []

    def __call__(self) -> FakeSSHClient:
        error = self.connect_errors.pop(0) if self.connect_errors else None
        client = FakeSSHClient(self.sftp, connect_error=error)
        self.clients.append(client)
        return client

    @property
    def all_closed(self) -> bool:
        return all(client.closed for client in self.clients)


def not_found_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, operation)


class FakeS3Client:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple[str, dict]] = []
        self.failure: Exception | None = None
        self.page_size = 1000

    def _record(self, name: str, params: dict) -> None:
        self.calls.append((name, params))
        if self.failure is not None:
            raise self.failure

    def generate_presigned_url(self, ClientMethod: str, Params: dict, ExpiresIn: int) -> str:
        self.calls.append(("generate_presigned_url", Params))
        return f"https://bucket.example.com/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    def head_object(self, **params):
        self._record("head_object", params)
        if params["Key"] not in self.objects:
            raise not_found_error("HeadObject")
        return {"ContentLength": len(self.objects[params["Key"]])}

    def get_object(self, **params):
        self._record("get_object", params)
        if params["Key"] not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[params["Key"]])}

    def delete_object(self, **params):
        self._record("delete_object", params)
        self.objects.pop(params["Key"], None)
        return {}

    def list_objects_v2(self, **params):
        self._record("list_objects_v2", params)
        modified = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return {
            "Contents": [
                {"Key": key, "Size": len(data), "LastModified": modified}
                for key, data in self.objects.items()
                if key.startswith(params["Prefix"])
            ]
        }

    def head_bucket(self, **params):
        self._record("head_bucket", params)
        return {}

    def get_paginator(self, operation_name: str):
        assert operation_name == "list_objects_v2"
        return _ListObjectsPaginator(self)


class _ListObjectsPaginator:
    def __init__(self, client: FakeS3Client) -> None:
        self._client = client

    def paginate(self, **params):
        self._client._record("paginate", params)
        rows = self._client.list_objects_v2(**params)["Contents"]
        size = self._client.page_size
        for start in range(0, len(rows), size):
            yield {"Contents": rows[start:start + size], "KeyCount": len(rows[start:start + size])}
        if not rows:
            yield {"KeyCount": 0}


def remote_provider(factory: SSHFactory, **overrides) -> RemoteFileStorageProvider:
    options = {
        "client": RemoteTransferClient(
            host="files.example.com",
            username="portal",
            password="secret",
            base_path="public_html",
            ssh_client_factory=factory,
        ),
        "public_base_url": "https://files.example.com",
    }
    options.update(overrides)
    return RemoteFileStorageProvider(**options)


def activate(storage: SimpleNamespace, backend: StorageBackend) -> None:
    DocumentStorageManager.configure(providers=storage.providers, active_backend=backend)
