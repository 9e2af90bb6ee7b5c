# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Field, action and repeater metadata from a walked control tree.

Repeaters come in two shapes:

1. Part-wrapped grids on document pages: ``fhc`` (part) -> ``lf`` (subform)
   -> ``rc``/``lrc``.  The grid sits exactly two path levels below the
   ``fhc`` and is reported under the part's design name and caption.
2. Standalone ``rc``/``lrc`` grids (list pages).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from . import ActionMetadata, ColumnMetadata, FieldMetadata, RepeaterMetadata
from .control_tree import Control, LogicalForm, WalkedControl, walk

logger = logging.getLogger(__name__)

FIELD_CONTROL_TYPES = frozenset({"sc", "dc", "bc", "i32c", "sec", "dtc", "pc"})
ACTION_CONTROL_TYPES = frozenset({"ac", "arc", "fla"})
REPEATER_CONTROL_TYPES = frozenset({"rc", "lrc"})
PART_CONTROL_TYPE = "fhc"


def _str_or_none(value: Any) -> str | None:
    return str(value) if value else None


class ControlParser:
    """Stateless; one instance can serve every form."""

    def walk_controls(self, form: LogicalForm | Control) -> list[WalkedControl]:
        return list(walk(form))

    def extract_fields(self, controls: Sequence[WalkedControl]) -> list[FieldMetadata]:
        return [self._field(wc) for wc in controls if wc.control.t in FIELD_CONTROL_TYPES]

    def extract_actions(self, controls: Sequence[WalkedControl]) -> list[ActionMetadata]:
        actions = []
        for wc in controls:
            if wc.control.t not in ACTION_CONTROL_TYPES:
                continue
            action = self._action(wc)
            if action is not None:
                actions.append(action)
        return actions

    def extract_repeaters(self, controls: Sequence[WalkedControl]) -> list[RepeaterMetadata]:
        repeaters: list[RepeaterMetadata] = []
        claimed: set[str] = set()

        for part in controls:
            if part.control.t != PART_CONTROL_TYPE or not part.control.design_name:
                continue
            depth = part.path.count("/") + 2
            grid = next(
                (
                    wc
                    for wc in controls
                    if wc.control.t in REPEATER_CONTROL_TYPES
                    and wc.path.startswith(part.path + "/")
                    and wc.path.count("/") == depth
                ),
                None,
            )
            if grid is None:
                continue
            base = self._repeater(grid)
            logger.debug("Part %s wraps grid at %s", part.control.design_name, grid.path)
            repeaters.append(
                RepeaterMetadata(
                    control_path=base.control_path,
                    caption=part.control.caption or base.caption,
                    name=part.control.design_name,
                    form_id=base.form_id,
                    columns=base.columns,
                )
            )
            claimed.add(grid.path)

        for wc in controls:
            if wc.control.t in REPEATER_CONTROL_TYPES and wc.path not in claimed:
                repeaters.append(self._repeater(wc))
        return repeaters

    # -- Conversions --

    def _field(self, wc: WalkedControl) -> FieldMetadata:
        c = wc.control
        return FieldMetadata(
            type=c.t or "",
            caption=_str_or_none(c.caption),
            name=_str_or_none(c.design_name) or _str_or_none(c.name),
            control_id=_str_or_none(c.control_identifier),
            control_path=wc.path,
            enabled=c.enabled,
            visible=c.visible,
        )

    def _action(self, wc: WalkedControl) -> ActionMetadata | None:
        c = wc.control
        if not c.caption:
            return None  # internal action
        system_action = c.extras.get("SystemAction")
        if system_action is None:
            ref = c.extras.get("ActionReference")
            if isinstance(ref, dict):
                system_action = ref.get("TargetId")
        icon = c.extras.get("Icon")
        icon_id = icon.get("Identifier") if isinstance(icon, dict) else None
        return ActionMetadata(
            caption=c.caption,
            system_action=system_action if isinstance(system_action, int) else None,
            enabled=c.enabled,
            control_id=_str_or_none(c.control_identifier),
            icon=_str_or_none(icon_id),
            synopsis=_str_or_none(c.extras.get("Synopsis")),
            control_path=wc.path,
        )

    def _repeater(self, wc: WalkedControl) -> RepeaterMetadata:
        c = wc.control
        columns = []
        for col in c.columns:
            template_path = col.extras.get("TemplateControlPath")
            columns.append(
                ColumnMetadata(
                    caption=_str_or_none(col.caption),
                    design_name=_str_or_none(col.design_name),
                    control_path=_str_or_none(template_path),
                    column_binder_path=_str_or_none(col.column_binder_name),
                )
            )
        return RepeaterMetadata(
            control_path=wc.path,
            caption=_str_or_none(c.caption),
            name=_str_or_none(c.design_name) or _str_or_none(c.name),
            form_id=_str_or_none(c.extras.get("FormId")),
            columns=tuple(columns),
        )
