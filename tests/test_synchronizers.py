"""Tests for dataset synchronizers and the repository fan-out."""

import dataclasses
from datetime import datetime, timezone

import pytest

from repometrics.sync.gateway import FetchError
from repometrics.sync.results import ResultKind
from repometrics.sync.synchronizers import (
    ACTIONS,
    CLONES,
    COMMITS,
    FORKS,
    LANGUAGE,
    LICENSE,
    REPO_TREE,
    SYNCHRONIZERS,
    VIEWS,
    WATCHERS,
    RepoContext,
    sync_actions,
    sync_clones,
    sync_forks,
    sync_language,
    sync_license,
    sync_repo_tree,
    sync_repository,
    sync_views,
    sync_watchers,
)

NOW = datetime(2024, 1, 3, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def ctx():
    return RepoContext(org_name="acme", token="tok", repo_id=101, repo_name="alpha")


def day(d, count):
    return {"date": f"2024-01-0{d}T00:00:00Z", "count": count}


def test_context_is_immutable(ctx):
    with pytest.raises(dataclasses.FrozenInstanceError):
        ctx.repo_name = "beta"
    assert ctx.new_record(list=[]) == {"repo_id": 101, "repo_name": "alpha", "list": []}


class TestWatchers:

    @pytest.mark.asyncio
    async def test_creates_record_verbatim(self, ctx, db, api):
        api.watchers = ([day(3, 12)], 12)

        assert await sync_watchers(ctx, db, api, NOW) == "success"

        assert await db.get_dataset(WATCHERS, 101) == {
            "repo_id": 101,
            "repo_name": "alpha",
            "list": [day(3, 12)],
            "watchers": 12,
        }

    @pytest.mark.asyncio
    async def test_replaces_todays_entry_and_total(self, ctx, db, api):
        await db.set_dataset(
            WATCHERS,
            ctx.new_record(list=[day(2, 10), {"date": "2024-01-03T06:00:00Z", "count": 11}], watchers=11),
            "acme",
        )
        api.watchers = ([{"date": "2024-01-03T18:00:00Z", "count": 14}], 14)

        await sync_watchers(ctx, db, api, NOW)

        record = await db.get_dataset(WATCHERS, 101)
        assert record["list"] == [day(2, 10), {"date": "2024-01-03T18:00:00Z", "count": 14}]
        assert record["watchers"] == 14

    @pytest.mark.asyncio
    async def test_fetch_and_merge_share_the_run_clock(self, ctx, db, api):
        late = datetime(2024, 1, 2, 23, 59, 0, tzinfo=timezone.utc)
        await db.set_dataset(
            WATCHERS,
            ctx.new_record(list=[{"date": "2024-01-02T23:00:00Z", "count": 5}], watchers=5),
            "acme",
        )
        api.watchers = ([{"date": "2024-01-02T23:59:00Z", "count": 6}], 6)

        await sync_watchers(ctx, db, api, late)

        assert api.watchers_now == late
        assert (await db.get_dataset(WATCHERS, 101))["list"] == [
            {"date": "2024-01-02T23:59:00Z", "count": 6}
        ]

    @pytest.mark.asyncio
    async def test_empty_fetch_leaves_history_alone(self, ctx, db, api):
        stored = ctx.new_record(list=[day(2, 10)], watchers=10)
        await db.set_dataset(WATCHERS, stored, "acme")
        api.watchers = ([], 0)

        await sync_watchers(ctx, db, api, NOW)

        assert await db.get_dataset(WATCHERS, 101) == stored


class TestTraffic:

    @pytest.mark.asyncio
    async def test_clones_merge(self, ctx, db, api):
        await db.set_dataset(CLONES, ctx.new_record(list=[day(1, 5), day(2, 3)]), "acme")
        api.clones = [day(2, 7), day(3, 2)]

        await sync_clones(ctx, db, api, NOW)

        record = await db.get_dataset(CLONES, 101)
        assert record["list"] == [day(1, 5), day(2, 7), day(3, 2)]

    @pytest.mark.asyncio
    async def test_views_created_when_missing(self, ctx, db, api):
        api.views = [day(1, 1)]

        await sync_views(ctx, db, api, NOW)

        assert (await db.get_dataset(VIEWS, 101))["list"] == [day(1, 1)]

    @pytest.mark.asyncio
    async def test_empty_fetch_does_not_write(self, ctx, db, api):
        stored = ctx.new_record(list=[day(1, 5), day(2, 3)])
        await db.set_dataset(VIEWS, stored, "acme")
        api.views = []

        await sync_views(ctx, db, api, NOW)

        assert await db.get_dataset(VIEWS, 101) == stored

    @pytest.mark.asyncio
    async def test_fetch_error_propagates(self, ctx, db, api):
        api.errors["get_clones"] = FetchError("Must have push access to repository", status_code=403)

        with pytest.raises(FetchError):
            await sync_clones(ctx, db, api, NOW)
        assert await db.get_dataset(CLONES, 101) is None


@pytest.mark.asyncio
async def test_actions_dedup(ctx, db, api):
    run1 = {"id": 1, "status": "completed", "date": "2024-01-01T10:00:00Z"}
    run2 = {"id": 2, "status": "completed", "date": "2024-01-02T10:00:00Z"}
    await db.set_dataset(ACTIONS, ctx.new_record(list=[run1]), "acme")
    api.actions = [run2, dict(run1)]

    await sync_actions(ctx, db, api, NOW)

    assert (await db.get_dataset(ACTIONS, 101))["list"] == [run1, run2]


@pytest.mark.asyncio
async def test_snapshots_are_fully_replaced(ctx, db, api):
    await db.set_dataset(FORKS, ctx.new_record(list=[{"id": 1}, {"id": 2}]), "acme")
    await db.set_dataset(LANGUAGE, ctx.new_record(language={"C": 5}), "acme")
    api.forks = [{"id": 3}]
    api.languages = {"Python": 10}
    api.license = None

    await sync_forks(ctx, db, api, NOW)
    await sync_language(ctx, db, api, NOW)
    await sync_license(ctx, db, api, NOW)

    assert (await db.get_dataset(FORKS, 101))["list"] == [{"id": 3}]
    assert (await db.get_dataset(LANGUAGE, 101))["language"] == {"Python": 10}
    assert await db.get_dataset(LICENSE, 101) == ctx.new_record(license=None)


class TestRepoTree:

    @pytest.mark.asyncio
    async def test_no_commits_is_a_noop(self, ctx, db, api):
        assert await sync_repo_tree(ctx, db, api, NOW) is False
        assert await db.get_dataset(REPO_TREE, 101) is None
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_latest_commit_without_sha_is_a_noop(self, ctx, db, api):
        await db.set_dataset(COMMITS, ctx.new_record(list=[{"date": "2024-01-01T00:00:00Z"}]), "acme")

        assert await sync_repo_tree(ctx, db, api, NOW) is False
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_uses_latest_commit(self, ctx, db, api):
        commits = [
            {"sha": "old", "date": "2024-01-01T00:00:00Z"},
            {"sha": "new", "date": "2024-01-02T00:00:00Z"},
        ]
        await db.set_dataset(COMMITS, ctx.new_record(list=commits), "acme")

        assert await sync_repo_tree(ctx, db, api, NOW) is True

        record = await db.get_dataset(REPO_TREE, 101)
        assert record["sha"] == "new"
        assert record["list"] == api.tree

    @pytest.mark.asyncio
    async def test_first_stored_commit_wins_a_date_tie(self, ctx, db, api):
        commits = [
            {"sha": "first", "date": "2024-01-02T00:00:00Z"},
            {"sha": "second", "date": "2024-01-02T00:00:00Z"},
            {"sha": "older", "date": "2024-01-01T00:00:00Z"},
        ]
        await db.set_dataset(COMMITS, ctx.new_record(list=commits), "acme")

        await sync_repo_tree(ctx, db, api, NOW)

        assert (await db.get_dataset(REPO_TREE, 101))["sha"] == "first"

    @pytest.mark.asyncio
    async def test_missing_tree_is_a_noop(self, ctx, db, api):
        await db.set_dataset(COMMITS, ctx.new_record(list=[{"sha": "abc", "date": "2024-01-01"}]), "acme")
        api.errors["get_repo_tree"] = FetchError("Not Found", status_code=404)

        assert await sync_repo_tree(ctx, db, api, NOW) is False
        assert await db.get_dataset(REPO_TREE, 101) is None


class TestFanOut:

    @pytest.mark.asyncio
    async def test_runs_every_dataset(self, ctx, db, api):
        report = await sync_repository(ctx, db, api, now=NOW)

        assert set(report.results) == set(SYNCHRONIZERS)
        assert all(result.is_ok for result in report.results.values())
        assert report.results[REPO_TREE].value is False
        assert not report.rate_limited

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_others(self, ctx, db, api):
        api.errors["get_views"] = FetchError("Server Error", status_code=500)
        api.errors["get_forks"] = RuntimeError("unexpected")
        api.clones = [day(1, 1)]

        report = await sync_repository(ctx, db, api, now=NOW)

        assert report.results[VIEWS].kind is ResultKind.TRANSIENT_ERROR
        assert report.results[VIEWS].detail == "SERVER ERROR"
        assert report.results[FORKS].kind is ResultKind.TRANSIENT_ERROR
        assert sorted(report.failed_datasets) == [FORKS, VIEWS]
        assert not report.rate_limited
        assert await db.get_dataset(CLONES, 101) is not None
        assert await db.get_dataset(VIEWS, 101) is None

    @pytest.mark.asyncio
    async def test_rate_limit_detected(self, ctx, db, api):
        api.errors["get_languages"] = FetchError(
            "API rate limit exceeded for installation ID 7.", status_code=403, rate_limit_remaining=0
        )

        report = await sync_repository(ctx, db, api, now=NOW)

        assert report.rate_limited
        assert report.results[LANGUAGE].kind is ResultKind.RATE_LIMITED
        assert report.results[WATCHERS].is_ok
