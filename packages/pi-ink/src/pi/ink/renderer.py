"""Tree walk from positioned nodes to composited frames.

Layout is not computed here: every :class:`Node` arrives with its position
relative to its parent and its size already resolved (by hand or by a
layout callback handed to :class:`TreeSource`).  The walk turns the tree
into :class:`~pi.ink.output.Output` writes and clips and splits the
permanent ("static") subtree from the live one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Literal, Protocol, Sequence

from pi.ink.output import Clip, Output
from pi.ink.styles import Transformer
from pi.ink.utils import widest_line

__all__ = [
    "FrameSource",
    "Node",
    "RenderResult",
    "TreeSource",
    "find_static",
    "node_height",
    "node_width",
    "render",
    "render_node_to_output",
]

Overflow = Literal["visible", "hidden"]


@dataclass(eq=False)
class Node:
    """A positioned box or text fragment.

    ``x``/``y`` are relative to the parent.  A ``width``/``height`` of 0
    means "as large as the content".
    """

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0
    text: str | None = None
    transform: Transformer | None = None
    overflow_x: Overflow = "visible"
    overflow_y: Overflow = "visible"
    display: Literal["flex", "none"] = "flex"
    static: bool = False
    children: list[Node] = field(default_factory=list)

    def append(self, child: Node) -> Node:
        self.children.append(child)
        return child


@dataclass(frozen=True)
class RenderResult:
    output: str
    output_height: int
    static_output: str


class FrameSource(Protocol):
    """What the scheduler renders from."""

    def calculate_layout(self, width: int) -> None: ...

    def render(self, start_prompt: str, end_prompt: str) -> RenderResult: ...


# ---------------------------------------------------------------------------
# Measuring
# ---------------------------------------------------------------------------


def node_width(node: Node) -> int:
    if node.width > 0:
        return node.width
    if node.text is not None:
        return widest_line(node.text)
    return max((child.x + node_width(child) for child in _visible(node.children)), default=0)


def node_height(node: Node) -> int:
    # Static content shrinks back to nothing once drained
    if node.height > 0 and not node.static:
        return node.height
    if node.text is not None:
        return len(node.text.split("\n")) if node.text else 0
    return max((child.y + node_height(child) for child in _visible(node.children)), default=0)


def _visible(children: Sequence[Node]) -> list[Node]:
    # Static subtrees are rendered on their own and take no space here
    return [child for child in children if child.display != "none" and not child.static]


def find_static(node: Node) -> Node | None:
    """Return the first static node in depth-first order."""
    if node.static:
        return node
    for child in node.children:
        found = find_static(child)
        if found is not None:
            return found
    return None


# ---------------------------------------------------------------------------
# Walking
# ---------------------------------------------------------------------------


def render_node_to_output(
    node: Node,
    output: Output,
    offset_x: int = 0,
    offset_y: int = 0,
    transformers: Sequence[Transformer] = (),
    skip_static: bool = False,
) -> None:
    """Issue writes and clips for *node* and its descendants."""
    if skip_static and node.static:
        return
    if node.display == "none":
        return

    x = offset_x + node.x
    y = offset_y + node.y

    # Inner transforms run first
    new_transformers: Sequence[Transformer] = transformers
    if node.transform is not None:
        new_transformers = [node.transform, *transformers]

    if node.text is not None:
        if node.text:
            output.write(x, y, node.text, new_transformers)
        return

    clip_horizontally = node.overflow_x == "hidden"
    clip_vertically = node.overflow_y == "hidden"
    clipped = clip_horizontally or clip_vertically
    if clipped:
        width = node_width(node)
        height = node_height(node)
        output.push_clip(
            Clip(
                x1=x if clip_horizontally else None,
                x2=x + width - 1 if clip_horizontally else None,
                y1=y if clip_vertically else None,
                y2=y + height - 1 if clip_vertically else None,
            )
        )

    for child in node.children:
        render_node_to_output(child, output, x, y, new_transformers, skip_static)

    if clipped:
        output.pop_clip()


def render(root: Node, start_prompt: str = "", end_prompt: str = "") -> RenderResult:
    """Composite the live tree and, separately, the static subtree.

    ``static_output`` is ``""`` without a static node and otherwise the
    static frame followed by a newline (just ``"\\n"`` when it is empty).
    """
    output = Output(node_width(root), node_height(root), start_prompt, end_prompt)
    render_node_to_output(root, output, skip_static=True)
    frame = output.get()

    static_output = ""
    static_node = find_static(root)
    if static_node is not None:
        static = Output(node_width(static_node), node_height(static_node), start_prompt, end_prompt)
        # Static content always starts at the left edge of a fresh line
        render_node_to_output(static_node, static, -static_node.x, -static_node.y)
        static_output = static.get().output + "\n"

    return RenderResult(frame.output, frame.height, static_output)


# ---------------------------------------------------------------------------
# TreeSource
# ---------------------------------------------------------------------------


class TreeSource:
    """Serves frames from a :class:`Node` tree.

    Static children are rendered once and then removed, so the next frame
    only carries what was appended in between.  *layout*, when given, is
    called with the root and the terminal width before every render.
    """

    def __init__(
        self,
        root: Node,
        layout: Callable[[Node, int], None] | None = None,
    ) -> None:
        self.root = root
        self._layout = layout

    def calculate_layout(self, width: int) -> None:
        self.root.width = width
        if self._layout is not None:
            self._layout(self.root, width)

    def render(self, start_prompt: str, end_prompt: str) -> RenderResult:
        result = render(self.root, start_prompt, end_prompt)
        static_node = find_static(self.root)
        if static_node is not None:
            static_node.children.clear()
        return result
