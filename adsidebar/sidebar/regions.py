"""Region discovery and emptiness classification.

A region is a relocated node whose fresh measurement is big enough to be
real content. Its verdict combines frame probe entries (frames cannot be
measured from outside) with a plain content check for frame-less regions.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from enum import StrEnum

from adsidebar.sidebar.probe import ProbeEntry
from adsidebar.sidebar.relocator import ManagedNode

_ALWAYS_CANDIDATE_TAGS = frozenset({"iframe", "img"})


class RegionVerdict(StrEnum):
    loaded = "loaded"
    empty = "empty"
    pending = "pending"


def indeterminate(value: float | None) -> bool:
    return value is None or math.isnan(value)


def discover_regions(nodes: Iterable[ManagedNode], min_size: float) -> list[ManagedNode]:
    """Measure every node afresh and keep the ones that qualify as regions."""
    regions: list[ManagedNode] = []
    for node in nodes:
        width, height = node.measure()
        content = node.content
        if not content.children and content.tag not in _ALWAYS_CANDIDATE_TAGS:
            continue
        # auto/auto never blocks completion and never counts as loaded
        if indeterminate(width) and indeterminate(height):
            continue
        # zero, negative or very thin boxes are not real content
        if (not indeterminate(width) and width <= min_size) or (
            not indeterminate(height) and height <= min_size
        ):
            continue
        regions.append(node)
    return regions


def frame_verdict(entry: ProbeEntry | None, min_size: float) -> RegionVerdict:
    if entry is None:
        return RegionVerdict.pending
    w, h = entry.width, entry.height
    degenerate = (indeterminate(w) and indeterminate(h)) or (
        not indeterminate(w) and not indeterminate(h) and w <= min_size and h <= min_size
    )
    if not degenerate:
        return RegionVerdict.loaded
    return RegionVerdict.empty if entry.ready_state == "complete" else RegionVerdict.pending


def classify_region(
    node: ManagedNode, record: Mapping[str, ProbeEntry], min_size: float
) -> RegionVerdict:
    wrapper = node.wrapper
    frames = wrapper.query_all("iframe")
    if frames:
        verdicts = [
            frame_verdict(record.get(f.frame.context_id) if f.frame else None, min_size)
            for f in frames
        ]
        if RegionVerdict.loaded in verdicts:
            return RegionVerdict.loaded
        if RegionVerdict.pending in verdicts:
            return RegionVerdict.pending
        return RegionVerdict.empty

    if wrapper.query_all("img") or wrapper.inner_text:
        return RegionVerdict.loaded
    return RegionVerdict.empty
