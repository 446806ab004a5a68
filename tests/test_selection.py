"""Tests for the cascading selection state machine."""

from __future__ import annotations

import asyncio

import pytest

from branchpanel.errors import BranchNotFound, ProjectNotFound, RequestFailed, SessionExpired
from branchpanel.models import Branch, ConnectionType, Organization, Project, SelectionSnapshot
from branchpanel.selection import SelectionStateMachine


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _FakeGateway:
    def __init__(self) -> None:
        self.orgs = [Organization(id="o1", name="Acme"), Organization(id="o2", name="Globex")]
        self.projects = {
            "o1": [Project(id="p1", name="web", org_id="o1"), Project(id="p2", name="jobs", org_id="o1")],
            "o2": [Project(id="p3", name="billing", org_id="o2")],
        }
        self.branches = {
            "p1": [Branch(id="b1", name="main"), Branch(id="b2", name="dev", parent_id="b1")],
            "p2": [Branch(id="b3", name="main")],
            "p3": [Branch(id="b4", name="main")],
        }
        self.calls: list[tuple[str, str]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, Exception] = {}

    async def _checkpoint(self, key: str) -> None:
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(key)
        if failure is not None:
            raise failure

    async def list_orgs(self, include_personal: bool = False) -> list[Organization]:
        self.calls.append(("orgs", ""))
        await self._checkpoint("orgs")
        return list(self.orgs)

    async def list_projects(self, org_id: str) -> list[Project]:
        self.calls.append(("projects", org_id))
        await self._checkpoint(org_id)
        return list(self.projects.get(org_id, []))

    async def list_branches(self, project_id: str) -> list[Branch]:
        self.calls.append(("branches", project_id))
        await self._checkpoint(project_id)
        return list(self.branches.get(project_id, []))


async def _machine(gateway: _FakeGateway, **kwargs) -> SelectionStateMachine:
    machine = SelectionStateMachine(gateway, **kwargs)
    await machine.load_organizations()
    return machine


@pytest.mark.anyio
async def test_select_org_clears_lower_levels_before_fetching() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    await machine.select_org("o1")
    await machine.select_project("p1")
    await machine.select_branch("b2")

    seen: list[SelectionSnapshot] = []
    machine.subscribe(seen.append)
    gateway.gates["o2"] = asyncio.Event()
    task = asyncio.ensure_future(machine.select_org("o2"))
    await asyncio.sleep(0)

    cleared = seen[0]
    assert cleared.selection.org_id == "o2"
    assert cleared.selection.project_id == ""
    assert cleared.selection.branch_id == ""
    assert cleared.projects == ()
    assert cleared.branches == ()

    gateway.gates["o2"].set()
    snapshot = await task
    assert [p.id for p in snapshot.projects] == ["p3"]
    assert snapshot.loading.projects is False


@pytest.mark.anyio
async def test_select_project_keeps_org_and_fills_branches() -> None:
    machine = await _machine(_FakeGateway())
    await machine.select_org("o1")

    snapshot = await machine.select_project("p1")

    assert snapshot.selection.org_id == "o1"
    assert snapshot.selection.project_name == "web"
    assert snapshot.selection.branch_id == ""
    assert [b.id for b in snapshot.branches] == ["b1", "b2"]


@pytest.mark.anyio
async def test_branch_choice_restored_when_returning_to_project() -> None:
    machine = await _machine(_FakeGateway())
    await machine.select_org("o1")
    await machine.select_project("p1")
    await machine.select_branch("b2")
    await machine.select_project("p2")

    snapshot = await machine.select_project("p1")

    assert snapshot.selection.branch_id == "b2"
    assert snapshot.selection.branch_name == "dev"
    assert snapshot.current_branch_id == "b2"


@pytest.mark.anyio
async def test_remembered_branch_dropped_when_deleted() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    await machine.select_org("o1")
    await machine.select_project("p1")
    await machine.select_branch("b2")
    await machine.select_project("p2")
    gateway.branches["p1"] = [Branch(id="b1", name="main")]

    snapshot = await machine.select_project("p1")

    assert snapshot.selection.branch_id == ""
    assert snapshot.current_branch_id == ""


@pytest.mark.anyio
async def test_new_mode_writes_parent_fields() -> None:
    machine = await _machine(_FakeGateway(), connection_type=ConnectionType.NEW)
    await machine.select_org("o1")
    await machine.select_project("p1")

    snapshot = await machine.select_branch("b1")

    assert snapshot.selection.parent_branch_id == "b1"
    assert snapshot.selection.parent_branch_name == "main"
    assert snapshot.selection.branch_id == ""


@pytest.mark.anyio
async def test_unknown_project_refetched_once_then_rejected() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    await machine.select_org("o1")
    gateway.calls.clear()

    with pytest.raises(ProjectNotFound):
        await machine.select_project("ghost")

    assert gateway.calls == [("projects", "o1")]
    assert machine.selection.project_id == ""


@pytest.mark.anyio
async def test_refetch_finds_newly_created_branch() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    await machine.select_org("o1")
    await machine.select_project("p1")
    gateway.branches["p1"].append(Branch(id="b9", name="preview"))

    snapshot = await machine.select_branch("b9")

    assert snapshot.selection.branch_name == "preview"


@pytest.mark.anyio
async def test_unknown_branch_raises() -> None:
    machine = await _machine(_FakeGateway())
    await machine.select_org("o1")
    await machine.select_project("p1")

    with pytest.raises(BranchNotFound):
        await machine.select_branch("missing")


@pytest.mark.anyio
async def test_superseded_fetch_results_are_dropped() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    gateway.gates["o1"] = asyncio.Event()

    first = asyncio.ensure_future(machine.select_org("o1"))
    await asyncio.sleep(0)
    second = asyncio.ensure_future(machine.select_org("o2"))
    await asyncio.sleep(0)
    gateway.gates["o1"].set()
    await first
    snapshot = await second

    assert snapshot.selection.org_id == "o2"
    assert [p.id for p in snapshot.projects] == ["p3"]


@pytest.mark.anyio
async def test_reset_discards_in_flight_results() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    gateway.gates["o1"] = asyncio.Event()

    task = asyncio.ensure_future(machine.select_org("o1"))
    await asyncio.sleep(0)
    machine.reset()
    gateway.gates["o1"].set()
    await task

    assert machine.selection.org_id == ""
    assert machine.projects == ()
    assert machine.orgs == ()


@pytest.mark.anyio
async def test_queued_project_refresh_keeps_branch_fetch_in_flight() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    await machine.select_org("o1")
    gateway.gates["p1"] = asyncio.Event()

    selecting = asyncio.ensure_future(machine.select_project("p1"))
    await asyncio.sleep(0)
    refreshing = asyncio.ensure_future(machine.refresh_projects())
    await asyncio.sleep(0)
    gateway.gates["p1"].set()
    await selecting
    snapshot = await refreshing

    assert snapshot.selection.project_id == "p1"
    assert [b.id for b in snapshot.branches] == ["b1", "b2"]
    assert snapshot.loading.branches is False


@pytest.mark.anyio
async def test_queued_branch_refresh_supersedes_branch_fetch() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    await machine.select_org("o1")
    gateway.gates["p1"] = asyncio.Event()

    selecting = asyncio.ensure_future(machine.select_project("p1"))
    await asyncio.sleep(0)
    refreshing = asyncio.ensure_future(machine.refresh_branches())
    await asyncio.sleep(0)
    gateway.branches["p1"].append(Branch(id="b9", name="preview"))
    gateway.gates["p1"].set()
    await selecting
    snapshot = await refreshing

    assert [b.id for b in snapshot.branches] == ["b1", "b2", "b9"]
    assert gateway.calls[-2:] == [("branches", "p1"), ("branches", "p1")]


@pytest.mark.anyio
async def test_fetch_failure_is_recorded_not_raised() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    gateway.failures["o1"] = RequestFailed(500, "boom")

    snapshot = await machine.select_org("o1")

    assert snapshot.selection.org_id == "o1"
    assert snapshot.projects == ()
    assert snapshot.last_error is not None and "500" in snapshot.last_error
    assert snapshot.loading.projects is False


@pytest.mark.anyio
async def test_auth_failures_propagate() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    gateway.failures["o1"] = SessionExpired()

    with pytest.raises(SessionExpired):
        await machine.select_org("o1")


@pytest.mark.anyio
async def test_identity_change_clears_selection() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    await machine.select_org("o1")
    await machine.select_project("p1")

    gateway.orgs = [Organization(id="o7", name="Initech")]
    changed = await machine.load_organizations()

    assert changed is True
    assert machine.selection.org_id == ""
    assert [org.id for org in machine.orgs] == ["o7"]


@pytest.mark.anyio
async def test_reloading_same_orgs_keeps_selection() -> None:
    machine = await _machine(_FakeGateway())
    await machine.select_org("o1")

    assert await machine.load_organizations() is False
    assert machine.selection.org_id == "o1"


@pytest.mark.anyio
async def test_refresh_branches_drops_deleted_branch() -> None:
    gateway = _FakeGateway()
    machine = await _machine(gateway)
    await machine.select_org("o1")
    await machine.select_project("p1")
    await machine.select_branch("b2")
    gateway.branches["p1"] = [Branch(id="b1", name="main")]

    snapshot = await machine.refresh_branches()

    assert snapshot.selection.project_id == "p1"
    assert snapshot.selection.branch_id == ""


@pytest.mark.anyio
async def test_connection_type_change_keeps_selection() -> None:
    machine = await _machine(_FakeGateway())
    await machine.select_org("o1")

    snapshot = await machine.set_connection_type("new")

    assert snapshot.selection.connection_type is ConnectionType.NEW
    assert snapshot.selection.org_id == "o1"
