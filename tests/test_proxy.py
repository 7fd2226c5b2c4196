"""Proxy fetches against httpx MockTransport remotes."""

from __future__ import annotations

import hashlib
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from repo_keeper.exceptions import RemoteFetchError
from repo_keeper.models import ConsumerDescriptor
from repo_keeper.policies import ChecksumPolicy, ReleasesPolicy, SnapshotsPolicy
from repo_keeper.proxy import ProxyConnector, RemoteRepository
from repo_keeper.scanner import BaseFile, KnownContentConsumer, RepositoryContentConsumers

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
JAR_PATH = "org/foo/foo/1.0/foo-1.0.jar"
JAR = b"remote jar bytes"


class RecordingConsumer(KnownContentConsumer):
    def __init__(self) -> None:
        super().__init__(ConsumerDescriptor(id="record", includes=["**/*.jar"]))
        self.seen: list[str] = []

    def process(self, file: BaseFile) -> None:
        self.seen.append(file.relative_path)


def _remote(
    files: dict[str, bytes | int],
    requests: list[str] | None = None,
    remote_id: str = "central",
) -> RemoteRepository:
    """Build a remote that serves ``files``; an int value is returned as a bare status code."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/maven2/")
        if requests is not None:
            requests.append(path)
        body = files.get(path, 404)
        if isinstance(body, int):
            return httpx.Response(body)
        return httpx.Response(200, content=body)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    return RemoteRepository(remote_id, "https://repo.example/maven2", client=client)


def _connector(
    root: Path,
    remotes: list[RemoteRepository],
    checksum: str = "fix",
    releases: str = "once",
    snapshots: str = "hourly",
    consumers: RepositoryContentConsumers | None = None,
) -> ProxyConnector:
    return ProxyConnector(
        root,
        "default",
        remotes,
        ReleasesPolicy(releases),
        SnapshotsPolicy(snapshots),
        ChecksumPolicy(checksum),
        consumers=consumers,
        now=NOW,
    )


def _age(path: Path, age: timedelta) -> None:
    stamp = (NOW - age).timestamp()
    os.utime(path, (stamp, stamp))


def test_fetch_downloads_file_and_sidecars(tmp_path: Path) -> None:
    requests: list[str] = []
    remote = _remote({JAR_PATH: JAR}, requests)
    consumer = RecordingConsumer()
    consumers = RepositoryContentConsumers([consumer], selected_known_ids=["record"])

    local = _connector(tmp_path, [remote], consumers=consumers).fetch(JAR_PATH)

    assert local == tmp_path / JAR_PATH
    assert local.read_bytes() == JAR
    assert requests == [JAR_PATH, f"{JAR_PATH}.sha1", f"{JAR_PATH}.md5"]
    # the remote has no sidecars, so the fix policy writes them
    assert (tmp_path / f"{JAR_PATH}.sha1").read_text(encoding="utf-8").startswith(hashlib.sha1(JAR).hexdigest())
    assert (tmp_path / f"{JAR_PATH}.md5").read_text(encoding="utf-8").startswith(hashlib.md5(JAR).hexdigest())
    assert consumer.seen == [JAR_PATH]
    assert not [p for p in local.parent.iterdir() if p.name.startswith(".fetch-")]


def test_remotes_are_tried_in_order(tmp_path: Path) -> None:
    first_requests: list[str] = []
    second_requests: list[str] = []
    first = _remote({}, first_requests, "first")
    second = _remote({JAR_PATH: JAR}, second_requests, "second")

    local = _connector(tmp_path, [first, second]).fetch(JAR_PATH)

    assert local is not None and local.read_bytes() == JAR
    assert first_requests == [JAR_PATH]
    assert second_requests[0] == JAR_PATH


def test_cached_release_is_not_refetched_with_once_policy(tmp_path: Path) -> None:
    cached = tmp_path / JAR_PATH
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"cached")
    requests: list[str] = []

    local = _connector(tmp_path, [_remote({JAR_PATH: JAR}, requests)]).fetch(JAR_PATH)

    assert local == cached
    assert cached.read_bytes() == b"cached"
    assert requests == []


def test_fresh_snapshot_respects_hourly_policy(tmp_path: Path) -> None:
    path = "org/foo/foo/1.0-SNAPSHOT/foo-1.0-SNAPSHOT.jar"
    cached = tmp_path / path
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"cached")
    _age(cached, timedelta(minutes=10))
    requests: list[str] = []
    connector = _connector(tmp_path, [_remote({path: JAR}, requests)])

    assert connector.fetch(path) == cached
    assert requests == []

    _age(cached, timedelta(hours=3))
    assert connector.fetch(path) == cached
    assert cached.read_bytes() == JAR
    assert requests[0] == path


def test_metadata_is_always_fetched(tmp_path: Path) -> None:
    path = "org/foo/foo/maven-metadata.xml"
    cached = tmp_path / path
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"<metadata/>")

    local = _connector(tmp_path, [_remote({path: b"<metadata><groupId>org.foo</groupId></metadata>"})]).fetch(path)

    assert local is not None
    assert b"groupId" in local.read_bytes()


def test_failing_checksum_policy_rejects_download(tmp_path: Path) -> None:
    bad = _remote({JAR_PATH: JAR, f"{JAR_PATH}.sha1": b"0" * 40}, remote_id="bad")

    assert _connector(tmp_path, [bad], checksum="fail").fetch(JAR_PATH) is None
    assert not (tmp_path / JAR_PATH).exists()
    assert not (tmp_path / f"{JAR_PATH}.sha1").exists()


def test_rejected_download_falls_through_to_next_remote(tmp_path: Path) -> None:
    bad = _remote({JAR_PATH: b"tampered", f"{JAR_PATH}.sha1": hashlib.sha1(JAR).hexdigest().encode()})
    good = _remote({JAR_PATH: JAR, f"{JAR_PATH}.sha1": hashlib.sha1(JAR).hexdigest().encode()})

    local = _connector(tmp_path, [bad, good], checksum="fail").fetch(JAR_PATH)

    assert local is not None and local.read_bytes() == JAR


def test_server_error_serves_cached_copy(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    cached = tmp_path / JAR_PATH
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"cached")

    with caplog.at_level("WARNING", logger="repo_keeper.proxy"):
        local = _connector(tmp_path, [_remote({JAR_PATH: 500})], releases="always").fetch(JAR_PATH)

    assert local == cached
    assert cached.read_bytes() == b"cached"
    assert "HTTP 500" in caplog.text


def test_nothing_available_returns_none(tmp_path: Path) -> None:
    assert _connector(tmp_path, [_remote({})]).fetch(JAR_PATH) is None
    assert _connector(tmp_path, [], releases="disabled").fetch(JAR_PATH) is None


def test_remote_get() -> None:
    remote = _remote({"a.txt": b"hello", "broken.txt": 503})

    assert remote.url_for("/a.txt") == "https://repo.example/maven2/a.txt"
    assert remote.get("a.txt") == b"hello"
    assert remote.get("missing.txt") is None
    with pytest.raises(RemoteFetchError, match="HTTP 503"):
        remote.get("broken.txt")


def test_transport_errors_become_remote_fetch_errors(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    remote = RemoteRepository(
        "down", "https://repo.example/maven2", client=httpx.Client(transport=httpx.MockTransport(handler))
    )

    with pytest.raises(RemoteFetchError, match="connection refused"):
        remote.download(JAR_PATH, tmp_path / "foo.jar")
    with pytest.raises(RemoteFetchError):
        remote.get(JAR_PATH)


def test_close_leaves_injected_client_open() -> None:
    remote = _remote({})
    _connector(Path("."), [remote]).close()

    assert not remote.client.is_closed


def test_owned_client_is_closed() -> None:
    remote = RemoteRepository("central", "https://repo.example/maven2")
    remote.close()

    assert remote.client.is_closed

