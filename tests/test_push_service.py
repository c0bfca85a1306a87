"""Push pipeline tests against in-memory tracker / sync fakes (see conftest)."""

import asyncio

import pytest
from conftest import FakeSync, FakeTracker

from madepush.concurrency import BatchConfig
from madepush.errors import RemoteWriteError, ValidationError
from madepush.models import (
    Backlog,
    EntityRef,
    Issue,
    IssueKind,
    Project,
    PushResult,
    Roadmap,
    SprintItem,
    Team,
    TeamMember,
    TimeBox,
)
from madepush.push_service import GitHubPushService, map_id_to_github_number
from madepush.rendering import LinkRelation
from madepush.store import RepositorySet


def _task(id_, title, parent=None):
    return Issue(id_, title, depends=[EntityRef(parent)] if parent else [])


def _document():
    tasks = [_task("t1", "Form", "s1"), _task("t2", "API", "s1")]
    stories = [_task("s1", "Login", "e1"), _task("s2", "Signup", "e9")]
    epics = [_task("e1", "Auth")]
    return tasks, stories, epics


# ---- push_issue ---------------------------------------------------------


@pytest.mark.parametrize("issue", [Issue("t1", ""), Issue("", "No id")])
def test_push_issue_rejects_invalid_issue_before_remote_calls(make_service, tracker, issue):
    service = make_service()
    with pytest.raises(ValidationError):
        asyncio.run(service.push_issue("acme", "widgets", "PVT_1", issue))
    assert tracker.calls == []
    assert len(service.repositories.issues) == 0


def test_push_issue_creates_attaches_and_records(make_service, tracker):
    service = make_service()
    issue = Issue("t1", "Form", type=IssueKind.TASK, backlog="Ops")

    result = asyncio.run(service.push_issue("acme", "widgets", "PVT_1", issue))

    assert result == PushResult("NODE_1", 1, "ITEM_NODE_1", "t1")
    assert tracker.calls == [("create_issue", "t1"), ("add_issue_to_project", "PVT_1", "NODE_1")]
    assert tracker.field_values == [("ITEM_NODE_1", "FIELD_TYPE", "Task")]
    record = service.repositories.issues.all()[0]
    assert record["uniqueKey"] == "acme/widgets/NODE_1"
    assert record["sourceId"] == "t1"
    assert record["number"] == 1


def test_push_issue_reuses_recorded_result(make_service, tracker):
    service = make_service()
    issue = Issue("t1", "Form", type=IssueKind.TASK)

    async def _run():
        first = await service.push_issue("acme", "widgets", "PVT_1", issue)
        second = await service.push_issue("acme", "widgets", "PVT_1", issue)
        return first, second

    first, second = asyncio.run(_run())
    assert second.issue_number == first.issue_number
    assert second.reused and not first.reused
    assert tracker.count("create_issue") == 1


def test_push_issue_field_failure_is_best_effort(make_service, tracker):
    async def _fail(*_args):
        raise RuntimeError("field locked")

    tracker.set_project_item_field = _fail
    service = make_service()

    result = asyncio.run(
        service.push_issue("acme", "widgets", "PVT_1", Issue("t1", "Form", type=IssueKind.TASK))
    )

    assert result.issue_number == 1
    assert len(service.repositories.issues) == 1


def test_push_issue_wraps_remote_failure(make_service, tracker):
    tracker.fail_titles["Form"] = 1
    service = make_service()

    with pytest.raises(RemoteWriteError) as excinfo:
        asyncio.run(service.push_issue("acme", "widgets", "PVT_1", Issue("t1", "Form")))

    assert excinfo.value.issue_id == "t1"
    assert len(service.repositories.issues) == 0


def test_push_project_is_reused_from_store(make_service, tracker):
    service = make_service()

    async def _run():
        return [await service.push_project("acme", Project("Roadmap")) for _ in range(2)]

    assert asyncio.run(_run()) == ["PVT_1", "PVT_1"]
    assert tracker.count("create_project") == 1


def test_push_project_with_issues_pushes_sequentially(make_service, tracker):
    service = make_service()
    issues = [Issue("t1", "Form"), Issue("t2", "API")]
    service.prepare_issues(issues, "task")

    results = asyncio.run(service.push_issues("acme", "widgets", Project("Roadmap"), issues))

    assert [r.issue_number for r in results] == [1, 2]
    assert all(i.type == IssueKind.TASK for i in issues)


# ---- batching -----------------------------------------------------------


def test_batch_fallback_reports_individual_successes(make_service, tracker):
    tracker.fail_titles.update({"A": 1, "B": 1, "C": 2})
    service = make_service()
    issues = [Issue("a", "A"), Issue("b", "B"), Issue("c", "C")]

    results = asyncio.run(service.process_issues_in_batches("acme", "widgets", "PVT_1", issues))

    assert [r.source_id for r in results] == ["a", "b"]
    assert tracker.count("create_issue") == 6


def test_batch_fallback_repushes_only_failed_issues(make_service, tracker):
    tracker.fail_titles["B"] = 1
    service = make_service()
    issues = [Issue("a", "A"), Issue("b", "B"), Issue("c", "C")]

    results = asyncio.run(service.process_issues_in_batches("acme", "widgets", "PVT_1", issues))

    assert [r.source_id for r in results] == ["a", "b", "c"]
    assert tracker.count("create_issue") == 4


def test_batches_are_paced(make_service, tracker):
    tracker.fail_titles["A"] = 1
    service = make_service(batch_size=2, batch_delay=1.0, individual_delay=0.5)
    sleeps: list[float] = []

    async def _sleep(seconds):
        sleeps.append(seconds)

    service.batch_processor._sleep = _sleep
    issues = [Issue(c.lower(), c) for c in "ABCDE"]

    results = asyncio.run(service.process_issues_in_batches("acme", "widgets", "PVT_1", issues))

    assert len(results) == 5
    assert sleeps == [0.5, 1.0, 1.0]


# ---- linking ------------------------------------------------------------


def test_link_stories_skips_unknown_epic(make_service, tracker):
    service = make_service()
    stories = [_task("s1", "Login", "e9")]

    outcomes = asyncio.run(
        service.link_stories_to_epics("acme", "widgets", stories, {"s1": 3}, {"e1": 5})
    )

    assert outcomes == []
    assert tracker.comments == []


def test_link_uses_first_resolvable_dependency(make_service, tracker):
    service = make_service()
    task = Issue("t1", "Form", depends=[EntityRef("s9"), EntityRef("s2"), EntityRef("s1")])

    outcomes = asyncio.run(
        service.link_tasks_to_stories("acme", "widgets", [task], {"t1": 1}, {"s1": 4, "s2": 5})
    )

    assert tracker.comments == [(5, "Depends on #1")]
    assert outcomes[0].ok and outcomes[0].relation is LinkRelation.BLOCKS


def test_link_failure_is_reported_not_raised(make_service, tracker):
    tracker.fail_comments.add(4)
    service = make_service()
    tasks = [_task("t1", "Form", "s1"), _task("t2", "API", "s2")]

    outcomes = asyncio.run(
        service.link_tasks_to_stories(
            "acme", "widgets", tasks, {"t1": 1, "t2": 2}, {"s1": 4, "s2": 5}
        )
    )

    assert [o.ok for o in outcomes] == [False, True]
    assert "#1" in str(outcomes[0].error)
    assert tracker.comments == [(5, "Depends on #2")]


def test_link_issues_posts_relation_phrase_on_child(make_service, tracker):
    service = make_service()
    asyncio.run(service.link_issues("acme", "widgets", 2, 9, "is blocked by"))
    assert tracker.comments == [(9, "Blocked by #2")]


def test_map_id_to_github_number_uses_source_ids():
    results = [PushResult("N1", 7, "I1", "t2"), PushResult("N2", 3, "I2", "t1"), PushResult("N3", 4, "I3")]
    assert map_id_to_github_number(results) == {"t2": 7, "t1": 3}


# ---- labels, teams, roadmaps, timeboxes ---------------------------------


def test_ensure_labels_for_backlogs_and_timeboxes(make_service, tracker):
    service = make_service()

    asyncio.run(
        service.ensure_labels(
            "acme", "widgets", [Backlog("Sprint1")], [TimeBox("S1", status="IN_PROGRESS")], []
        )
    )

    by_name = {label.name: label for label in tracker.labels}
    assert [label.name for label in tracker.labels] == [
        "Feature",
        "Task",
        "Epic",
        "Sprint1",
        "sprint: S1",
        "status: IN_PROGRESS",
        "type: sprint",
    ]
    assert by_name["status: IN_PROGRESS"].color == "0E8A16"
    assert by_name["Sprint1"].color == "ededed"
    assert tracker.count("roadmap_labels") == 0


def test_ensure_labels_with_roadmaps(make_service, tracker):
    service = make_service()
    asyncio.run(service.ensure_labels("acme", "widgets", roadmaps=[Roadmap("2025")]))
    names = [label.name for label in tracker.labels]
    assert names == ["Feature", "Task", "Epic", "type: roadmap", "type: milestone"]
    assert tracker.count("roadmap_labels") == 1


def test_teams_are_provisioned_once(make_service, tracker):
    service = make_service()
    teams = [Team("core", "Core", team_members=[TeamMember("octo"), TeamMember("")])]

    async def _run():
        first = await service.provision_teams("acme", teams)
        second = await service.provision_teams("acme", teams)
        return first, second

    assert asyncio.run(_run()) == (["core"], [])
    assert tracker.count("create_team") == 1
    assert [c for c in tracker.calls if c[0] == "add_member"] == [("add_member", "Core", "octo")]


def test_roadmap_failure_does_not_stop_others(make_service, tracker):
    tracker.fail_roadmaps.add("R1")
    service = make_service()

    results = asyncio.run(
        service.process_roadmaps("acme", "widgets", [Roadmap("R1"), Roadmap("R2")])
    )

    assert [r.roadmap for r in results] == ["R2"]
    assert tracker.count("create_roadmap") == 2


def test_timebox_failure_does_not_stop_others(make_service, tracker):
    tracker.fail_timeboxes.add("Alpha")
    service = make_service()
    beta = TimeBox("Beta", sprint_items=[SprintItem(EntityRef("t1")), SprintItem(EntityRef("t9"))])

    results = asyncio.run(
        service.process_timeboxes(
            "acme", "widgets", "PVT_1", [TimeBox("Alpha"), beta], [], {"t1": 7}
        )
    )

    assert len(results) == 1
    assert results[0].task_numbers == (7,)
    assert ("sprint_labels", "Beta", (7,)) in tracker.calls
    assert [r["title"] for r in service.repositories.timeboxes.all()] == ["Beta"]


# ---- full push ----------------------------------------------------------


def _full_push(service, tasks, stories, epics, **extra):
    return asyncio.run(
        service.full_push(
            "acme", "widgets", Project("Roadmap"), epics, stories, tasks, **extra
        )
    )


def test_full_push_orders_tiers_and_links(make_service, tracker):
    service = make_service()
    tasks, stories, epics = _document()

    summary = _full_push(service, tasks, stories, epics)

    created = [c[1] for c in tracker.calls if c[0] == "create_issue"]
    assert created == ["t1", "t2", "s1", "s2", "e1"]
    numbers = map_id_to_github_number(summary.tasks + summary.stories + summary.epics)
    assert tracker.comments == [
        (numbers["s1"], f"Depends on #{numbers['t1']}"),
        (numbers["s1"], f"Depends on #{numbers['t2']}"),
        (numbers["e1"], f"Depends on #{numbers['s1']}"),
    ]
    assert summary.totals["links"] == 3
    assert all(i.type == IssueKind.FEATURE for i in stories)


def test_full_push_feature_body_receives_task_results(make_service, tracker):
    service = make_service()
    seen = {}
    original = tracker.create_issue

    async def _spy(org, repo, issue, assignees, *children):
        child_tasks = children[0] if children else ()
        task_results = children[2] if len(children) > 2 else ()
        seen[issue.id] = ([t.id for t in child_tasks], [r.source_id for r in task_results])
        return await original(org, repo, issue, assignees, *children)

    tracker.create_issue = _spy
    tasks, stories, epics = _document()

    _full_push(service, tasks, stories, epics)

    assert seen["s1"] == (["t1", "t2"], ["t1", "t2"])
    assert seen["t1"] == ([], [])


def test_full_push_is_idempotent(tmp_path):
    tracker = FakeTracker()
    tasks, stories, epics = _document()
    extras = dict(
        teams=[Team("core", "Core", team_members=[TeamMember("octo")])],
        timeboxes=[TimeBox("Alpha", sprint_items=[SprintItem(EntityRef("t1"))])],
    )

    def _service():
        return GitHubPushService(
            tracker,
            FakeSync(),
            RepositorySet(tmp_path / "db"),
            batch_config=BatchConfig(batch_delay=0, individual_delay=0),
        )

    _full_push(_service(), tasks, stories, epics, **extras)
    before = list(tracker.calls), list(tracker.comments)
    summary = _full_push(_service(), tasks, stories, epics, **extras)

    assert tracker.count("create_issue") == 5
    assert tracker.count("create_project") == 1
    assert tracker.count("create_team") == 1
    assert tracker.count("create_sprint_issue") == 1
    assert tracker.comments == before[1]
    assert summary.totals["tasks"] == 2 and all(r.reused for r in summary.tasks)


def test_full_push_rerun_links_recorded_task_to_newly_created_story(make_service, tracker):
    tasks, stories, epics = _document()
    tracker.fail_titles["Login"] = 2

    first = _full_push(make_service(), tasks, stories, epics)
    assert "s1" not in map_id_to_github_number(first.stories)
    assert tracker.comments == []

    second = _full_push(make_service(), tasks, stories, epics)

    numbers = map_id_to_github_number(second.tasks + second.stories + second.epics)
    assert [r.reused for r in second.tasks] == [True, True]
    assert tracker.comments == [
        (numbers["s1"], f"Depends on #{numbers['t1']}"),
        (numbers["s1"], f"Depends on #{numbers['t2']}"),
        (numbers["e1"], f"Depends on #{numbers['s1']}"),
    ]


def test_link_skips_pairs_recorded_by_earlier_run(make_service, tracker):
    service = make_service()
    tasks = [_task("t1", "Form", "s1"), _task("t2", "API", "s1")]

    outcomes = asyncio.run(
        service.link_tasks_to_stories(
            "acme", "widgets", tasks, {"t1": 1, "t2": 2}, {"s1": 4}, reused={"t1", "s1"}
        )
    )

    assert tracker.comments == [(4, "Depends on #2")]
    assert len(outcomes) == 1


def test_full_push_skips_issues_known_to_sync(make_service, tracker, sync):
    sync.known.update({"Form", "Sprint: Alpha"})
    service = make_service()
    tasks, stories, epics = _document()

    summary = _full_push(
        service, tasks, stories, epics, timeboxes=[TimeBox("Alpha"), TimeBox("Beta")]
    )

    assert "t1" not in [c[1] for c in tracker.calls if c[0] == "create_issue"]
    assert len(summary.sprints) == 1
    assert tracker.count("create_sprint_issue") == 1


def test_full_push_survives_sync_failure(tmp_path, tracker):
    service = GitHubPushService(
        tracker,
        FakeSync(fail=True),
        RepositorySet(tmp_path / "db"),
        batch_config=BatchConfig(batch_delay=0, individual_delay=0),
    )
    tasks, stories, epics = _document()

    summary = _full_push(service, tasks, stories, epics)

    assert len(summary.epics) == 1


def test_full_push_validation_error_stops_before_issue_creation(make_service, tracker):
    service = make_service()
    tasks, stories, epics = _document()
    stories.append(Issue("s3", ""))

    with pytest.raises(ValidationError):
        _full_push(service, tasks, stories, epics)

    assert tracker.count("create_issue") == 0


def test_full_push_runs_roadmaps_and_timeboxes(make_service, tracker):
    tracker.fail_roadmaps.add("Broken")
    service = make_service()
    tasks, stories, epics = _document()
    alpha = TimeBox(
        "Alpha", sprint_items=[SprintItem(EntityRef("t1")), SprintItem(EntityRef("t2"))]
    )

    summary = _full_push(
        service,
        tasks,
        stories,
        epics,
        backlogs=[Backlog("Ops")],
        timeboxes=[alpha],
        roadmaps=[Roadmap("Broken"), Roadmap("2025")],
    )

    assert [r.roadmap for r in summary.roadmaps] == ["2025"]
    numbers = map_id_to_github_number(summary.tasks)
    assert summary.sprints[0].task_numbers == (numbers["t1"], numbers["t2"])
    assert ("sprint_labels", "Alpha", (numbers["t1"], numbers["t2"])) in tracker.calls
    assert summary.totals["roadmaps"] == 1 and summary.totals["sprints"] == 1
