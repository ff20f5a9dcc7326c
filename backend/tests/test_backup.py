"""
Export, subtree import and full backup restore.
"""

import pytest
from sqlalchemy.orm import Session

from taskflow.database import build_engine, init_db
from taskflow.exceptions import HierarchyError, ValidationError
from taskflow.schemas import (
    BackupData,
    ProjectData,
    ProjectExport,
    ProjectFilter,
    SavedViewData,
    SearchHistoryData,
    TaskData,
    TaskFilter,
    TemplateData,
)
from taskflow.services import backup, hierarchy, peripheral
from taskflow.services.query import count_projects, count_tasks, list_tasks


@pytest.fixture
def other_session(tmp_path):
    """A second, empty store to restore into."""
    engine = build_engine(f"sqlite:///{tmp_path / 'restore_target.db'}")
    init_db(engine)
    with Session(engine, expire_on_commit=False) as session:
        yield session
        session.rollback()
    engine.dispose()


def chain_backup(*names, tasks_in_last=()):
    """Flat backup where each project is the parent of the next."""
    projects = []
    for index, name in enumerate(names, start=1):
        projects.append(ProjectData(id=index, name=name, parent_id=index - 1 or None))
    tasks = [TaskData(id=100 + i, title=title) for i, title in enumerate(tasks_in_last)]
    projects[-1].tasks = tasks
    return BackupData(projects=projects, tasks=tasks)


def descendant_names(session, name):
    root = hierarchy.get_project_by_name(session, name)
    return {p.name for p in hierarchy.get_descendants(session, root.id)}


class TestExport:

    def test_export_nested_project(self, session, make_project, make_task):
        root = make_project("Root", aliases=["rt"])
        child = make_project("Child", parent=root)
        make_task("root task", project=root)
        make_task("child task", project=child, tags=["x"])

        export = backup.export_project(session, root.id)

        assert export.project.name == "Root"
        assert export.project.aliases == ["rt"]
        assert [t.title for t in export.project.tasks] == ["root task"]
        assert [c.name for c in export.project.children] == ["Child"]
        assert export.project.children[0].tasks[0].tags == ["x"]

    def test_export_without_descendants_or_tasks(self, session, make_project, make_task):
        root = make_project("Root")
        make_project("Child", parent=root)
        make_task("root task", project=root)

        export = backup.export_project(session, root.id, include_descendants=False, include_tasks=False)

        assert export.project.children == []
        assert export.project.tasks == []

    def test_full_backup_shape(self, session, make_project, make_task):
        root = make_project("Root")
        make_project("Child", parent=root)
        make_task("in root", project=root)
        make_task("loose")

        data = backup.create_full_backup(session)

        assert {p.name: p.parent_id for p in data.projects} == {"Root": None, "Child": root.id}
        assert sorted(t.title for t in data.tasks) == ["in root", "loose"]
        root_data = next(p for p in data.projects if p.name == "Root")
        assert [t.title for t in root_data.tasks] == ["in root"]

    def test_load_rejects_malformed_json(self):
        with pytest.raises(ValidationError):
            backup.load_backup("{not json")
        with pytest.raises(ValidationError):
            backup.load_project_export('{"version": "1.0"}')


class TestFullRestore:

    def test_three_level_chain(self, session):
        backup.restore_full_backup(session, chain_backup("A", "B", "C"))
        assert descendant_names(session, "A") == {"B", "C"}
        assert hierarchy.get_path_string(session, hierarchy.get_project_by_name(session, "C").id) == "A > B > C"

    def test_deep_chain_fully_resolved(self, session):
        names = ["L1", "L2", "L3", "L4", "L5", "L6"]
        summary = backup.restore_full_backup(session, chain_backup(*names))
        assert summary.projects_created == 6
        assert descendant_names(session, "L1") == set(names[1:])

    def test_children_listed_before_parents(self, session):
        data = chain_backup("A", "B", "C")
        data.projects.reverse()
        backup.restore_full_backup(session, data)
        assert descendant_names(session, "A") == {"B", "C"}

    def test_tasks_rebound_to_new_projects(self, session, make_project):
        # Occupy low ids so new ids differ from the exported ones
        make_project("Existing 1")
        make_project("Existing 2")

        backup.restore_full_backup(session, chain_backup("A", "B", "C", tasks_in_last=["deep task"]))

        c = hierarchy.get_project_by_name(session, "C")
        assert [t.title for t in list_tasks(session, TaskFilter(project_id=c.id))] == ["deep task"]

    def test_unlisted_task_imported_unattached(self, session):
        data = chain_backup("A")
        data.tasks.append(TaskData(id=555, title="floating"))

        summary = backup.restore_full_backup(session, data)

        assert summary.tasks_unattached == 1
        floating = list_tasks(session, TaskFilter(search_query="floating"))
        assert [t.project_id for t in floating] == [None]

    def test_round_trip_between_stores(self, session, other_session, make_project, make_task):
        root = make_project("Root", color="blue", aliases=["rt"])
        mid = make_project("Mid", parent=root)
        leaf = make_project("Leaf", parent=mid)
        make_task("leaf task", project=leaf, tags=["deep"], priority="urgent")
        make_task("loose task")

        raw = backup.create_full_backup(session).model_dump_json()
        backup.restore_full_backup(other_session, backup.load_backup(raw))

        assert count_projects(other_session) == 3
        assert descendant_names(other_session, "Root") == {"Mid", "Leaf"}
        restored = hierarchy.get_project_by_alias(other_session, "rt")
        assert (restored.name, restored.color) == ("Root", "blue")
        new_leaf = hierarchy.get_project_by_name(other_session, "Leaf")
        leaf_tasks = list_tasks(other_session, TaskFilter(project_id=new_leaf.id))
        assert [(t.title, t.tags, t.priority) for t in leaf_tasks] == [("leaf task", ["deep"], "urgent")]
        assert count_tasks(other_session) == 2

    def test_cycle_rejected_before_writing(self, session):
        data = BackupData(projects=[
            ProjectData(id=1, name="A", parent_id=2),
            ProjectData(id=2, name="B", parent_id=1),
            ProjectData(id=3, name="C"),
        ])
        with pytest.raises(HierarchyError):
            backup.restore_full_backup(session, data)
        assert count_projects(session) == 0

    def test_orphan_imported_as_root(self, session):
        data = BackupData(projects=[ProjectData(id=7, name="Orphan", parent_id=99)])
        backup.restore_full_backup(session, data)
        assert hierarchy.get_project_by_name(session, "Orphan").parent_id is None

    def test_invalid_due_date_aborts(self, session):
        data = chain_backup("A")
        data.tasks.append(TaskData(id=1, title="bad date", due_date="05/01/2026"))
        with pytest.raises(ValidationError):
            backup.restore_full_backup(session, data)

    def test_invalid_task_field_aborts(self, session):
        data = chain_backup("A")
        data.tasks.append(TaskData(id=1, title="bad", priority="critical"))
        with pytest.raises(ValidationError):
            backup.restore_full_backup(session, data)

    def test_unknown_strategy_rejected(self, session):
        with pytest.raises(ValidationError):
            backup.restore_full_backup(session, chain_backup("A"), strategy="replace")


class TestConflictStrategies:

    @pytest.fixture
    def existing(self, make_project):
        return make_project("Shared", description="local", color="red")

    def incoming(self):
        return BackupData(projects=[
            ProjectData(id=1, name="Shared", description="from backup", color="green"),
            ProjectData(id=2, name="Child", parent_id=1),
        ])

    @pytest.mark.parametrize("strategy", ["skip", "merge"])
    def test_skip_and_merge_keep_existing(self, session, existing, strategy):
        summary = backup.restore_full_backup(session, self.incoming(), strategy=strategy)

        assert summary.projects_kept == 1
        project = hierarchy.get_project(session, existing.id)
        assert (project.description, project.color) == ("local", "red")
        # New children still attach to the kept project
        assert descendant_names(session, "Shared") == {"Child"}

    def test_overwrite_replaces_fields(self, session, existing):
        summary = backup.restore_full_backup(session, self.incoming(), strategy="overwrite")

        assert summary.projects_overwritten == 1
        project = hierarchy.get_project(session, existing.id)
        assert (project.description, project.color) == ("from backup", "green")
        assert count_projects(session, ProjectFilter(search_query="Shared")) == 1


class TestSubtreeImport:

    def export_data(self):
        return ProjectExport(project=ProjectData(
            name="Imported",
            tasks=[TaskData(title="top task")],
            children=[
                ProjectData(name="Nested", tasks=[TaskData(title="nested task", due_date="2026-02-01")]),
            ],
        ))

    def test_import_under_parent(self, session, make_project):
        parent = make_project("Home")
        imported = backup.import_project_subtree(session, self.export_data(), parent_id=parent.id)

        assert imported.parent_id == parent.id
        assert descendant_names(session, "Home") == {"Imported", "Nested"}
        nested = hierarchy.get_project_by_name(session, "Nested")
        nested_tasks = list_tasks(session, TaskFilter(project_id=nested.id))
        assert [str(t.due_date) for t in nested_tasks] == ["2026-02-01"]

    def test_import_from_json(self, session):
        raw = self.export_data().model_dump_json()
        backup.import_project_subtree(session, backup.load_project_export(raw))
        assert count_tasks(session) == 2

    def test_skip_does_not_duplicate_tasks(self, session):
        backup.import_project_subtree(session, self.export_data())
        backup.import_project_subtree(session, self.export_data(), strategy="skip")
        assert count_projects(session) == 2
        assert count_tasks(session) == 2

    def test_failure_leaves_nothing_behind(self, session):
        data = self.export_data()
        data.project.children[0].tasks.append(TaskData(title=" "))
        with pytest.raises(ValidationError):
            backup.import_project_subtree(session, data)
        assert count_projects(session) == 0
        assert count_tasks(session) == 0


class TestPeripheralRestore:

    def backup_with_extras(self):
        return BackupData(
            templates=[TemplateData(name="Sprint", task_definitions=[{"title": "Plan"}])],
            views=[SavedViewData(name="Urgent", filter_config={"priority": "urgent"}, hot_key=1)],
            search_history=[SearchHistoryData(query_text="backend", search_mode="fuzzy")],
        )

    def test_restores_templates_views_and_history(self, session):
        summary = backup.restore_full_backup(session, self.backup_with_extras())

        assert (summary.templates_restored, summary.views_restored, summary.searches_restored) == (1, 1, 1)
        assert peripheral.get_template(session, "Sprint").task_definitions[0]["title"] == "Plan"
        view_filter = peripheral.saved_view_filter(peripheral.get_saved_view(session, "Urgent"))
        assert view_filter.priority == "urgent"
        assert [h.query_text for h in peripheral.list_search_history(session)] == ["backend"]

    def test_repeat_restore_does_not_duplicate(self, session):
        backup.restore_full_backup(session, self.backup_with_extras())
        summary = backup.restore_full_backup(session, self.backup_with_extras())

        assert (summary.templates_restored, summary.views_restored, summary.searches_restored) == (0, 0, 0)
        assert len(peripheral.list_search_history(session)) == 1

    def test_overwrite_replaces_view_filter(self, session):
        backup.restore_full_backup(session, self.backup_with_extras())
        changed = self.backup_with_extras()
        changed.views[0].filter_config = {"priority": "low"}

        backup.restore_full_backup(session, changed, strategy="overwrite")

        view_filter = peripheral.saved_view_filter(peripheral.get_saved_view(session, "Urgent"))
        assert view_filter.priority == "low"
