import json

import pytest

from impactmatrix import store
from impactmatrix.errors import FilterStateError, NotFoundError, ValidationError
from impactmatrix.filters import FilterState, idea_has_drift, idea_quadrant
from impactmatrix.grid import MAJOR_PROJECTS, QUICK_WINS, score_to_pixel


def test_init_db_is_idempotent(db):
    store.init_db()
    store.init_db()


def test_organization_crud(conn):
    created = store.create_organization(conn, "  Acme  ", "Widgets")
    assert created["name"] == "Acme"
    updated = store.update_organization(conn, created["id"], {"description": ""})
    assert updated["name"] == "Acme"
    assert updated["description"] is None
    listed = store.list_organizations(conn)
    assert [org["name"] for org in listed] == ["Acme"]
    assert listed[0]["project_count"] == 0
    assert store.delete_organization(conn, created["id"]) is True
    with pytest.raises(NotFoundError):
        store.get_organization(conn, created["id"])


def test_organizations_sorted_by_name(conn):
    for name in ("Zeta", "Alpha", "Mid"):
        store.create_organization(conn, name)
    assert [org["name"] for org in store.list_organizations(conn)] == ["Alpha", "Mid", "Zeta"]


def test_blank_name_rejected(conn):
    with pytest.raises(ValidationError):
        store.create_organization(conn, "   ")


def test_project_requires_existing_organization(conn):
    with pytest.raises(NotFoundError):
        store.create_project(conn, "Orphan", "missing")


def test_get_matrix_includes_hierarchy(conn, matrix):
    category = store.create_category(conn, "Growth", matrix["id"])
    store.create_idea(conn, "First", matrix["id"], category_id=category["id"])
    loaded = store.get_matrix(conn, matrix["id"])
    assert loaded["project"]["name"] == "Roadmap"
    assert loaded["project"]["organization"]["name"] == "Acme"
    assert loaded["categories"][0]["idea_count"] == 1
    assert loaded["ideas"][0]["category"]["name"] == "Growth"


def test_category_defaults_and_color_validation(conn, matrix):
    category = store.create_category(conn, "Ops", matrix["id"])
    assert category["color"] == "#3b82f6"
    for bad in ("blue", "#12345", "#GGGGGG", "3b82f6"):
        with pytest.raises(ValidationError):
            store.create_category(conn, "Bad", matrix["id"], color=bad)
    updated = store.update_category(conn, category["id"], {"color": "#ABCDEF"})
    assert updated["color"] == "#ABCDEF"


@pytest.mark.parametrize("field", ["effort", "business_value", "weight"])
@pytest.mark.parametrize("value", [0, 11, 2.5, "high", True])
def test_scores_out_of_range_rejected(conn, matrix, field, value):
    with pytest.raises(ValidationError):
        store.create_idea(conn, "Bad", matrix["id"], **{field: value})


def test_idea_defaults(conn, matrix):
    idea = store.create_idea(conn, "Plain", matrix["id"])
    assert (idea["effort"], idea["business_value"], idea["weight"]) == (5, 5, 5)
    assert idea["status"] == "DRAFT"
    assert idea["position_x"] is None and idea["position_y"] is None
    assert idea["category"] is None


def test_numeric_strings_accepted(conn, matrix):
    idea = store.create_idea(conn, "Form post", matrix["id"], effort="3", business_value="7")
    assert (idea["effort"], idea["business_value"]) == (3, 7)


def test_invalid_status_rejected(conn, matrix):
    with pytest.raises(ValidationError):
        store.create_idea(conn, "Bad", matrix["id"], status="DONE")


def test_category_must_belong_to_same_matrix(conn, matrix):
    other = store.create_matrix(conn, "Other", matrix["project_id"])
    foreign = store.create_category(conn, "Foreign", other["id"])
    with pytest.raises(ValidationError):
        store.create_idea(conn, "Bad", matrix["id"], category_id=foreign["id"])


def test_partial_update_keeps_other_fields(conn, matrix):
    idea = store.create_idea(conn, "Keep", matrix["id"], effort=3, business_value=8, weight=7)
    updated = store.update_idea(conn, idea["id"], {"status": "COMPLETED"})
    assert updated["status"] == "COMPLETED"
    assert (updated["effort"], updated["business_value"], updated["weight"]) == (3, 8, 7)
    assert updated["title"] == "Keep"


def test_drag_to_new_cell_updates_scores(conn, matrix):
    idea = store.create_idea(conn, "Move me", matrix["id"], effort=2, business_value=8)
    assert idea_quadrant(idea) == QUICK_WINS
    moved = store.update_position(conn, idea["id"], 8, 8)
    assert (moved["effort"], moved["business_value"]) == (8, 8)
    assert moved["position_x"] is None
    assert idea_quadrant(moved) == MAJOR_PROJECTS
    assert idea_has_drift(moved) is False


def test_custom_position_and_reset(conn, matrix):
    idea = store.create_idea(conn, "Float", matrix["id"], effort=2, business_value=8)
    x, y = score_to_pixel(8, 8)
    positioned = store.update_custom_position(conn, idea["id"], x, y)
    assert (positioned["position_x"], positioned["position_y"]) == (x, y)
    assert (positioned["effort"], positioned["business_value"]) == (2, 8)
    assert idea_has_drift(positioned) is True
    reset = store.reset_position(conn, idea["id"])
    assert reset["position_x"] is None and reset["position_y"] is None


@pytest.mark.parametrize("position", [(None, 10.0), (10.0, None), ("abc", 1.0), (float("nan"), 1.0)])
def test_custom_position_requires_both_finite_coordinates(conn, matrix, position):
    idea = store.create_idea(conn, "Float", matrix["id"])
    with pytest.raises(ValidationError):
        store.update_custom_position(conn, idea["id"], *position)


def test_reset_all_positions_counts_only_positioned(conn, matrix):
    first = store.create_idea(conn, "One", matrix["id"])
    second = store.create_idea(conn, "Two", matrix["id"])
    store.create_idea(conn, "Three", matrix["id"])
    store.update_custom_position(conn, first["id"], 10, 10)
    store.update_custom_position(conn, second["id"], 20, 20)
    assert store.reset_all_positions(conn, matrix["id"]) == 2
    assert all(idea["position_x"] is None for idea in store.list_ideas(conn, impact_matrix_id=matrix["id"]))


def test_deleting_category_uncategorizes_ideas(conn, matrix):
    category = store.create_category(conn, "Temp", matrix["id"])
    idea = store.create_idea(conn, "Tagged", matrix["id"], category_id=category["id"])
    store.delete_category(conn, category["id"])
    survivor = store.get_idea(conn, idea["id"])
    assert survivor["category_id"] is None
    assert survivor["category"] is None


def test_deleting_organization_cascades(conn, matrix):
    idea = store.create_idea(conn, "Gone", matrix["id"])
    project = store.get_project(conn, matrix["project_id"])
    store.delete_organization(conn, project["organization_id"])
    conn.commit()
    for table in ("projects", "impact_matrices", "ideas"):
        assert conn.execute(f"SELECT COUNT(*) AS c FROM {table}").fetchone()["c"] == 0
    with pytest.raises(NotFoundError):
        store.get_idea(conn, idea["id"])


def test_duplicate_matrix_remaps_categories_and_resets_positions(conn, matrix):
    category = store.create_category(conn, "Growth", matrix["id"], color="#22c55e")
    idea = store.create_idea(conn, "Copied", matrix["id"], effort=4, category_id=category["id"])
    store.update_custom_position(conn, idea["id"], 500, 200)
    store.create_filter_preset(conn, "Mine", FilterState(), matrix["id"])

    copy = store.duplicate_matrix(conn, matrix["id"])
    loaded = store.get_matrix(conn, copy["id"])

    assert copy["name"] == "Bets (Copy)"
    assert copy["project_id"] == matrix["project_id"]
    assert len(loaded["categories"]) == 1
    new_category = loaded["categories"][0]
    assert new_category["id"] != category["id"]
    assert new_category["color"] == "#22c55e"
    copied_idea = loaded["ideas"][0]
    assert copied_idea["category_id"] == new_category["id"]
    assert copied_idea["effort"] == 4
    assert copied_idea["position_x"] is None
    assert store.list_filter_presets(conn, copy["id"]) == []
    # Source untouched.
    assert store.get_idea(conn, idea["id"])["position_x"] == 500


def test_duplicate_project_copies_every_matrix(conn, matrix):
    store.create_matrix(conn, "Second", matrix["project_id"])
    store.create_idea(conn, "Idea", matrix["id"])
    copy = store.duplicate_project(conn, matrix["project_id"])
    assert copy["name"] == "Roadmap (Copy)"
    names = sorted(m["name"] for m in store.list_matrices(conn, copy["id"]))
    assert names == ["Bets (Copy)", "Second (Copy)"]
    total_ideas = sum(m["idea_count"] for m in store.get_project(conn, copy["id"])["matrices"])
    assert total_ideas == 1


def test_failed_duplicate_rolls_back(conn, matrix, monkeypatch):
    store.create_idea(conn, "Idea", matrix["id"])
    conn.commit()

    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "create_idea", boom)
    with pytest.raises(RuntimeError):
        store.duplicate_matrix(conn, matrix["id"])
    conn.rollback()
    assert [m["name"] for m in store.list_matrices(conn)] == ["Bets"]


def test_filter_presets_validate_and_skip_corrupt_rows(conn, matrix):
    preset = store.create_filter_preset(conn, "Quick", {"quadrants": ["quick-wins"]}, matrix["id"])
    assert preset["filters"]["quadrants"] == ["quick-wins"]
    with pytest.raises(FilterStateError):
        store.create_filter_preset(conn, "Bad", {"quadrants": ["nowhere"]}, matrix["id"])

    conn.execute(
        "INSERT INTO filter_presets (id, name, filters, impact_matrix_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
        ("corrupt", "Corrupt", json.dumps({"statuses": "DRAFT"}), matrix["id"], store.iso(), store.iso()),
    )
    assert [p["name"] for p in store.list_filter_presets(conn, matrix["id"])] == ["Quick"]
    with pytest.raises(FilterStateError):
        store.get_filter_preset(conn, "corrupt")

    store.delete_filter_preset(conn, preset["id"])
    with pytest.raises(NotFoundError):
        store.get_filter_preset(conn, preset["id"])


def test_duplicating_max_length_names_fits_the_limit(conn, matrix):
    long_name = "M" * store.NAME_MAX_LENGTH
    source = store.create_matrix(conn, long_name, matrix["project_id"])
    copy = store.duplicate_matrix(conn, source["id"])
    assert len(copy["name"]) == store.NAME_MAX_LENGTH
    assert copy["name"].endswith(" (Copy)")
    again = store.duplicate_matrix(conn, copy["id"])
    assert len(again["name"]) == store.NAME_MAX_LENGTH

    store.update_project(conn, matrix["project_id"], {"name": "P" * store.NAME_MAX_LENGTH})
    project_copy = store.duplicate_project(conn, matrix["project_id"])
    assert len(project_copy["name"]) == store.NAME_MAX_LENGTH
    copied_names = [m["name"] for m in store.list_matrices(conn, project_copy["id"])]
    assert all(len(name) <= store.NAME_MAX_LENGTH for name in copied_names)


class RecordingCursor:
    def __init__(self):
        self.closed = False
        self.queries = []

    def execute(self, sql, params):
        self.queries.append((sql, params))

    def close(self):
        self.closed = True


class RecordingConnection:
    def __init__(self):
        self.cursors = []
        self.closed = False

    def cursor(self):
        cursor = RecordingCursor()
        self.cursors.append(cursor)
        return cursor

    def close(self):
        self.closed = True


def test_postgres_connection_reuses_one_cursor():
    raw = RecordingConnection()
    compat = store.PostgresCompatConnection(raw)
    compat.execute("SELECT * FROM ideas WHERE id = ?", ("a",))
    compat.executescript("SELECT 1; SELECT 2;")
    assert len(raw.cursors) == 1
    assert raw.cursors[0].queries[0] == ("SELECT * FROM ideas WHERE id = %s", ("a",))
    assert len(raw.cursors[0].queries) == 3
    compat.close()
    assert raw.cursors[0].closed and raw.closed
