from __future__ import annotations

import hashlib
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from repo_keeper.exceptions import PolicyError, PolicyViolationError
from repo_keeper.policies import (
    ChecksumPolicy,
    FetchPolicy,
    ReleasesPolicy,
    SnapshotsPolicy,
    _UpdatePolicy,
    apply_policy,
    evaluate_policy,
)

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
CONTENT = b"downloaded artifact"


def _cached(tmp_path: Path, age: timedelta, name: str = "foo-1.0.jar") -> Path:
    path = tmp_path / name
    path.write_bytes(CONTENT)
    stamp = (NOW - age).timestamp()
    os.utime(path, (stamp, stamp))
    return path


def test_fetch_policy_parse() -> None:
    assert FetchPolicy.parse("daily") is FetchPolicy.DAILY
    with pytest.raises(PolicyError, match="Unknown fetch policy code"):
        FetchPolicy.parse("weekly")


@pytest.mark.parametrize("code", ["once", "hourly", "daily", "always"])
def test_missing_local_file_is_always_fetched(tmp_path: Path, code: str) -> None:
    assert apply_policy(code, tmp_path / "missing.jar", NOW)


@pytest.mark.parametrize(
    ("code", "age", "expected"),
    [
        ("disabled", timedelta(days=30), False),
        ("once", timedelta(days=30), False),
        ("always", timedelta(seconds=1), True),
        ("hourly", timedelta(minutes=30), False),
        ("hourly", timedelta(hours=2), True),
        ("daily", timedelta(hours=23), False),
        ("daily", timedelta(days=2), True),
    ],
)
def test_apply_policy_with_cached_file(tmp_path: Path, code: str, age: timedelta, expected: bool) -> None:
    assert apply_policy(code, _cached(tmp_path, age), NOW) is expected


def test_disabled_never_fetches_even_without_local_copy(tmp_path: Path) -> None:
    assert not apply_policy("disabled", tmp_path / "missing.jar", NOW)


def test_unknown_code_fails_closed_and_logs(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("ERROR", logger="repo_keeper.policies"):
        decision = evaluate_policy("weekly", tmp_path / "missing.jar", NOW)

    assert not decision.should_fetch
    assert "weekly" in decision.reason
    assert "Unknown fetch policy code" in caplog.text


def test_releases_policy_only_concerns_releases(tmp_path: Path) -> None:
    cached = _cached(tmp_path, timedelta(days=30))
    policy = ReleasesPolicy("once")

    policy.apply("org/foo/foo/1.0-SNAPSHOT/foo-1.0-SNAPSHOT.jar", "1.0-SNAPSHOT", cached, NOW)
    policy.apply("org/foo/foo/maven-metadata.xml", None, cached, NOW)
    with pytest.raises(PolicyViolationError, match="releases policy 'once'"):
        policy.apply("org/foo/foo/1.0/foo-1.0.jar", "1.0", cached, NOW)


def test_snapshots_policy_only_concerns_snapshots(tmp_path: Path) -> None:
    cached = _cached(tmp_path, timedelta(minutes=5))
    policy = SnapshotsPolicy("hourly")

    policy.apply("org/foo/foo/1.0/foo-1.0.jar", "1.0", cached, NOW)
    policy.apply("org/foo/foo/1.0-SNAPSHOT/maven-metadata.xml", "1.0-SNAPSHOT", cached, NOW)
    with pytest.raises(PolicyViolationError):
        policy.apply(
            "org/foo/foo/1.0-SNAPSHOT/foo-1.0-20240601.110000-1.jar", "1.0-20240601.110000-1", cached, NOW
        )


def test_update_policy_base_requires_concerns() -> None:
    class Incomplete(_UpdatePolicy):
        id = "incomplete"

    with pytest.raises(TypeError):
        Incomplete("once")
    assert ReleasesPolicy("once").concerns("1.0")
    assert not ReleasesPolicy("once").concerns("1.0-SNAPSHOT")


def test_checksum_policy_rejects_unknown_option() -> None:
    with pytest.raises(PolicyError):
        ChecksumPolicy("maybe")


def test_checksum_policy_ignore_accepts_anything(tmp_path: Path) -> None:
    downloaded = _cached(tmp_path, timedelta(0))
    (tmp_path / "foo-1.0.jar.sha1").write_text("0" * 40, encoding="utf-8")

    ChecksumPolicy("ignore").apply(downloaded)

    assert downloaded.exists()


def test_checksum_policy_fail_passes_valid_download(tmp_path: Path) -> None:
    downloaded = _cached(tmp_path, timedelta(0))
    (tmp_path / "foo-1.0.jar.sha1").write_text(hashlib.sha1(CONTENT).hexdigest(), encoding="utf-8")

    ChecksumPolicy("fail").apply(downloaded)

    assert downloaded.exists()


def test_checksum_policy_fail_removes_bad_download(tmp_path: Path) -> None:
    downloaded = _cached(tmp_path, timedelta(0))
    sha1 = tmp_path / "foo-1.0.jar.sha1"
    md5 = tmp_path / "foo-1.0.jar.md5"
    sha1.write_text("0" * 40, encoding="utf-8")
    md5.write_text(hashlib.md5(CONTENT).hexdigest(), encoding="utf-8")

    with pytest.raises(PolicyViolationError, match="file removed"):
        ChecksumPolicy("fail").apply(downloaded)

    assert not downloaded.exists()
    assert not sha1.exists()
    assert not md5.exists()


def test_checksum_policy_fail_without_sidecars(tmp_path: Path) -> None:
    downloaded = _cached(tmp_path, timedelta(0))

    with pytest.raises(PolicyViolationError):
        ChecksumPolicy("fail").apply(downloaded)
    assert not downloaded.exists()


def test_checksum_policy_fix_writes_sidecars(tmp_path: Path) -> None:
    downloaded = _cached(tmp_path, timedelta(0))
    (tmp_path / "foo-1.0.jar.sha1").write_text("garbage", encoding="utf-8")

    ChecksumPolicy("fix").apply(downloaded)

    assert (tmp_path / "foo-1.0.jar.sha1").read_text(encoding="utf-8") == (
        f"{hashlib.sha1(CONTENT).hexdigest()}  foo-1.0.jar\n"
    )
    assert (tmp_path / "foo-1.0.jar.md5").read_text(encoding="utf-8") == (
        f"{hashlib.md5(CONTENT).hexdigest()}  foo-1.0.jar\n"
    )


def test_checksum_policy_skips_checksum_files(tmp_path: Path) -> None:
    sidecar = tmp_path / "foo-1.0.jar.sha1"
    sidecar.write_text("whatever", encoding="utf-8")

    ChecksumPolicy("fail").apply(sidecar)

    assert sidecar.exists()
