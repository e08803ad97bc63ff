from __future__ import annotations

from deploybot.core.result import Err, Ok
from deploybot.github.memory import InMemoryHost
from deploybot.github.models import CompareStatus


def test_merge_appends_squash_commit_to_base() -> None:
    host = InMemoryHost()
    host.add_branch("staging")
    host.add_branch("release-1", ["staging-root"])
    host.add_pull(5, base="release-1")

    assert host.merge(5) == Ok("squash-5")
    assert host.branches["release-1"] == ["staging-root", "squash-5"]
    assert not host.pulls[5].is_open
    listed = host.list_merged_into("release-1")
    assert isinstance(listed, Ok)
    assert [m.number for m in listed.value] == [5]

    again = host.merge(5)
    assert isinstance(again, Err)


def test_compare_follows_histories() -> None:
    host = InMemoryHost()
    host.add_branch("release-1", ["root", "squash-1", "squash-2"])
    host.add_branch("old", ["root", "squash-9"])

    assert host.compare("release-1", "squash-1") == Ok(CompareStatus.BEHIND)
    assert host.compare("release-1", "squash-2") == Ok(CompareStatus.IDENTICAL)
    assert host.compare("release-1", "squash-9") == Ok(CompareStatus.DIVERGED)
    assert isinstance(host.compare("release-1", "nowhere"), Err)


def test_mergeable_script_repeats_last_value() -> None:
    host = InMemoryHost()
    host.add_pull(3)
    host.mergeable[3] = [None, False]

    values = []
    for _ in range(3):
        pull = host.get_pull(3)
        assert isinstance(pull, Ok)
        values.append(pull.value.mergeable)
    assert values == [None, False, False]


def test_fail_on_targets_one_key() -> None:
    host = InMemoryHost()
    host.add_pull(1)
    host.add_pull(2)
    host.fail_on("merge:2")

    assert isinstance(host.merge(1), Ok)
    failed = host.merge(2)
    assert isinstance(failed, Err)
    assert failed.error.kind == "rejected"
    assert host.calls == ["merge:1", "merge:2"]
