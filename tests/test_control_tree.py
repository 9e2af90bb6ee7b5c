# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for formmap.control_tree: model, paths, walkers and visitors."""

from __future__ import annotations

import pytest

from formmap.control_tree import (
    ROOT_PATH,
    Control,
    ControlWalker,
    FindByIdVisitor,
    LogicalForm,
    StatisticsVisitor,
    TypeFilterVisitor,
    child_path,
    clone_form,
    resolve_control_by_path,
    walk,
)
from tests._protocol_helpers import control, make_form, nested_form

DEEP = 5000


def _make_tree() -> LogicalForm:
    """Form with header actions, actions, nested groups and a duplicated action."""
    return LogicalForm.from_dict(
        make_form(
            [
                control(
                    "gc",
                    Caption="General",
                    Children=[
                        control("sc", Caption="No.", DesignName="No", ControlIdentifier="id-no", StringValue="10000"),
                        control("sc", Caption="Name", DesignName="Name", ControlIdentifier="id-name"),
                    ],
                ),
                control("ac", Caption="Post"),
                control("rc", Caption="Lines", Children=[control("sc", Caption="Qty")]),
            ],
            HeaderActions=[control("ac", Caption="Edit")],
            Actions=[control("ac", Caption="Post"), control("ac", Caption="Release")],
            AppName="Base Application",
            Custom="kept",
        )
    )


# =========================================================================
# Model
# =========================================================================


class TestModel:
    def test_form_properties(self):
        form = _make_tree()
        assert form.server_id == "f1"
        assert form.cache_key == "21:embedded(False)"
        assert form.view_mode == 2
        assert form.app_name == "Base Application"
        assert form.extras == {"Custom": "kept"}

    def test_unmodeled_keys_go_to_extras(self):
        c = Control.from_dict({"t": "ac", "Caption": "Post", "SystemAction": 40, "Icon": {"Identifier": "Post"}})
        assert c.extras == {"SystemAction": 40, "Icon": {"Identifier": "Post"}}
        assert "SystemAction" not in c.properties

    def test_flags_default_true(self):
        c = Control.from_dict({"t": "sc", "Visible": False})
        assert c.visible is False
        assert c.enabled is True

    def test_bool_is_not_an_id(self):
        assert Control.from_dict({"t": "sc", "ControlId": True}).control_id is None
        assert Control.from_dict({"t": "sc", "ControlID": 7}).control_id == 7

    def test_column_binder_name(self):
        c = Control.from_dict({"t": "rcc", "ColumnBinder": {"Name": "1_c2"}})
        assert c.column_binder_name == "1_c2"

    def test_non_dict_children_keep_indexes(self):
        form = LogicalForm.from_dict(make_form(["junk", control("sc", Caption="Real")]))
        assert len(form.children) == 2
        assert resolve_control_by_path(form, "server:c[1]").caption == "Real"

    def test_display_name(self):
        assert Control(design_name="D", name="N", caption="C").display_name == "D"
        assert Control(name="N", caption="C").display_name == "N"
        assert Control(caption="C").display_name == "C"

    def test_clone_is_deep(self):
        form = _make_tree()
        copy = clone_form(form)
        copy.children[0].children[0].string_value = "changed"
        assert form.children[0].children[0].string_value == "10000"
        assert isinstance(copy, LogicalForm)

    def test_clone_copies_nested_arrays_and_overlays(self):
        form = LogicalForm.from_dict(
            make_form([control("rc", Columns=[control("rcc", Caption="No.")], Properties={"Visible": True})])
        )
        copy = clone_form(form)
        copy.children[0].properties["Visible"] = False
        copy.children[0].columns.append(Control(t="rcc"))
        assert form.children[0].properties == {"Visible": True}
        assert len(form.children[0].columns) == 1


# =========================================================================
# Paths
# =========================================================================


class TestResolve:
    def test_root(self):
        form = _make_tree()
        assert resolve_control_by_path(form, "server") is form
        assert resolve_control_by_path(form, "server:") is form

    def test_nested_child(self):
        form = _make_tree()
        assert resolve_control_by_path(form, "server:c[0]/c[1]").caption == "Name"

    def test_header_actions_and_actions(self):
        form = _make_tree()
        assert resolve_control_by_path(form, "server:ha[0]").caption == "Edit"
        assert resolve_control_by_path(form, "server:a[1]").caption == "Release"

    def test_type_prefixed_segment_addresses_children(self):
        form = _make_tree()
        assert resolve_control_by_path(form, "server:gc[0]/sc[0]").caption == "No."

    def test_empty_segments_are_skipped(self):
        form = _make_tree()
        assert resolve_control_by_path(form, "server:c[0]//c[0]").caption == "No."

    @pytest.mark.parametrize(
        "path",
        [
            "server:c[9]",
            "server:c[0]/c[5]",
            "server:a[2]",
            "server:c[x]",
            "server:c[0",
            "server:c[-1]",
            "server:c[0]\n",
            "server:c[99999999999999999999]",
            "garbage",
        ],
    )
    def test_bad_paths_resolve_to_none(self, path):
        assert resolve_control_by_path(_make_tree(), path) is None

    def test_non_string_path(self):
        assert resolve_control_by_path(_make_tree(), None) is None

    def test_child_path(self):
        assert child_path(ROOT_PATH, "c", 0) == "server:c[0]"
        assert child_path("server:c[0]", "a", 3) == "server:c[0]/a[3]"


# =========================================================================
# Walking
# =========================================================================


class TestWalk:
    def test_order_is_header_actions_then_actions_then_children(self):
        form = _make_tree()
        paths = [w.path for w in walk(form)]
        assert paths == [
            "server",
            "server:ha[0]",
            "server:a[0]",
            "server:a[1]",
            "server:c[0]",
            "server:c[0]/c[0]",
            "server:c[0]/c[1]",
            "server:c[1]",
            "server:c[2]",
            "server:c[2]/c[0]",
        ]

    def test_depths(self):
        depths = {w.path: w.depth for w in walk(_make_tree())}
        assert depths["server"] == 0
        assert depths["server:a[0]"] == 1
        assert depths["server:c[2]/c[0]"] == 2

    def test_every_walked_path_resolves_to_its_control(self):
        form = _make_tree()
        for walked in walk(form):
            assert resolve_control_by_path(form, walked.path) is walked.control

    def test_deep_tree_does_not_recurse(self):
        form = LogicalForm(t="lf")
        node: Control = form
        for _ in range(3000):
            child = Control(t="gc")
            node.children.append(child)
            node = child
        assert sum(1 for _ in walk(form)) == 3001

    def test_deep_wire_tree(self):
        form = LogicalForm.from_dict(nested_form(DEEP))
        last = list(walk(form))[-1]
        assert last.depth == DEEP
        assert resolve_control_by_path(form, last.path).caption == f"Level {DEEP - 1}"

    def test_deep_wire_tree_clone_and_visit(self):
        form = LogicalForm.from_dict(nested_form(DEEP))
        copy = clone_form(form)
        visitor = StatisticsVisitor()
        ControlWalker().walk(copy, visitor)
        assert visitor.total_controls == DEEP + 1
        assert visitor.max_depth == DEEP


class TestVisitors:
    def test_type_filter(self):
        visitor = TypeFilterVisitor({"ac"})
        ControlWalker().walk(_make_tree(), visitor)
        assert [m.path for m in visitor.matches] == ["server:ha[0]", "server:a[0]", "server:a[1]", "server:c[1]"]

    def test_find_by_id_stops_early(self):
        visited = []

        class Recording(FindByIdVisitor):
            def visit(self, control, depth, path):
                visited.append(path)
                return super().visit(control, depth, path)

        visitor = Recording("id-no")
        ControlWalker().walk(_make_tree(), visitor)
        assert visitor.found.path == "server:c[0]/c[0]"
        assert visited[-1] == "server:c[0]/c[0]"
        assert "server:c[1]" not in visited

    def test_find_by_id_missing(self):
        visitor = FindByIdVisitor("nope")
        ControlWalker().walk(_make_tree(), visitor)
        assert visitor.found is None

    def test_statistics(self):
        visitor = StatisticsVisitor()
        ControlWalker().walk(_make_tree(), visitor)
        assert visitor.total_controls == 10
        assert visitor.max_depth == 2
        assert visitor.type_counts["ac"] == 4
        assert visitor.type_counts["lf"] == 1

    def test_pruning(self):
        class SkipGroups(StatisticsVisitor):
            def visit(self, control, depth, path):
                super().visit(control, depth, path)
                return control.t != "gc"

        visitor = SkipGroups()
        ControlWalker().walk(_make_tree(), visitor)
        assert visitor.total_controls == 8
