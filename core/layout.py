"""
PRIVDAG LAYOUT - Swimlane and Position Constraints

Only the geometry the engine needs to judge positions: swimlane widths per
participant, the bands data resources and export tasks are pinned to, and
the bounds check used by the validator. Nothing here renders.

All sizes come from the [layout] config section (LayoutConfig); pass one
explicitly to override.
"""
import math
from typing import List, Optional, Tuple

import msgspec

from core.schemas import Position, Participant
from infrastructure.config import LayoutConfig, BoundsConfig, get_config


class Swimlane(msgspec.Struct, kw_only=True, omit_defaults=True):
    """A vertical lane owned by one participant."""
    id: str
    name: str
    width: float
    color: Optional[str] = None


def _layout(layout: Optional[LayoutConfig]) -> LayoutConfig:
    return layout if layout is not None else get_config().layout


# =============================================================================
# SWIMLANE WIDTHS
# =============================================================================

def calculate_swimlane_widths(
    canvas_width: float,
    swimlane_count: int,
    label_width: Optional[float] = None,
    layout: Optional[LayoutConfig] = None,
) -> Tuple[List[float], List[Position]]:
    """
    Split the canvas (minus the label column) into equal lanes.

    Returns:
        (lane widths, label anchor positions), one entry per lane
    """
    layout = _layout(layout)
    if swimlane_count <= 0:
        return [], []
    if label_width is None:
        label_width = layout.swimlane_label_width

    lane_width = (canvas_width - label_width) / swimlane_count
    widths = [lane_width] * swimlane_count
    label_positions = [
        Position(x=label_width / 2, y=layout.node_spacing)
        for _ in range(swimlane_count)
    ]
    return widths, label_positions


def create_swimlanes(
    participants: List[Participant],
    canvas_width: float,
    layout: Optional[LayoutConfig] = None,
) -> List[Swimlane]:
    """One lane per participant, in participant order."""
    if not participants:
        return []
    widths, _ = calculate_swimlane_widths(canvas_width, len(participants), layout=layout)
    return [
        Swimlane(id=p.id, name=p.name, width=widths[i], color=p.color)
        for i, p in enumerate(participants)
    ]


# =============================================================================
# POSITION CONSTRAINTS
# =============================================================================

def constrain_to_swimlane(
    position: Position,
    canvas_width: float,
    swimlane_count: int,
    label_width: Optional[float] = None,
    layout: Optional[LayoutConfig] = None,
) -> Position:
    """
    Pull x back inside the lane the position falls in.

    The lane is picked by x alone. A position left of its lane lands one
    spacing inside the left edge; right of it, one node width plus one
    spacing inside the right edge. y is untouched.
    """
    layout = _layout(layout)
    if swimlane_count <= 0:
        return position
    if label_width is None:
        label_width = layout.swimlane_label_width

    widths, _ = calculate_swimlane_widths(canvas_width, swimlane_count, label_width, layout)
    lane_index = math.floor(position.x / (canvas_width / swimlane_count))

    min_x = label_width + sum(widths[:max(lane_index, 0)])
    if 0 <= lane_index < len(widths):
        lane_width = widths[lane_index]
    else:
        lane_width = canvas_width / swimlane_count
    max_x = min_x + lane_width

    x = position.x
    if x < min_x:
        x = min_x + layout.node_spacing
    elif x > max_x:
        x = max_x - layout.default_node_width - layout.node_spacing
    return Position(x=x, y=position.y)


def constrain_data_resource_position(
    position: Position,
    layout: Optional[LayoutConfig] = None,
) -> Position:
    """Data resources live on the top band."""
    layout = _layout(layout)
    top = layout.data_resource_top_height
    if position.y < top:
        return Position(x=position.x, y=layout.node_spacing)
    if position.y > top:
        return Position(x=position.x, y=top - layout.default_node_height / 2)
    return position


def constrain_export_task_position(
    position: Position,
    canvas_height: float,
    layout: Optional[LayoutConfig] = None,
) -> Position:
    """Export tasks live on the bottom band."""
    layout = _layout(layout)
    bottom_boundary = canvas_height - layout.export_task_bottom_height
    if position.y < bottom_boundary:
        return Position(x=position.x, y=bottom_boundary - layout.default_node_height / 2)
    if position.y > canvas_height:
        return Position(
            x=position.x,
            y=canvas_height - layout.default_node_height - layout.node_spacing,
        )
    return position


def is_within_bounds(position: Position, bounds: Optional[BoundsConfig] = None) -> bool:
    """True when the position lies inside the configured element area (inclusive)."""
    if bounds is None:
        bounds = get_config().bounds
    return (
        bounds.min_x <= position.x <= bounds.max_x
        and bounds.min_y <= position.y <= bounds.max_y
    )
