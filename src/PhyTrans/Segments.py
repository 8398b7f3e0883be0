#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyTrans --
##  Library for the Reconstruction of Transmission Trees on Phylogenies
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##
##  See "LICENSE.txt" for terms and conditions of usage.
##
##  If you use this work or any portion thereof in published work,
##  please cite it as:
##
##     Mark Kessler, Luay Nakhleh. 2025.
##
##############################################################################

"""
Author : Mark Kessler
Last Edit : 10/19/26
First Included in Version : 1.0.0

Docs   - [x]
Tests  - [x]
Design - [x]

Splits a coloured time tree into one segment per host. A segment holds the
within-host genealogy of a host as a time ordered list of sample and
coalescent events, together with the time the host was infected (its birth
time). From the event list the classic coalescent interval bookkeeping is
derived: the width of every interval and the number of lineages present
during it.

Lineages leaving a host through a transmission enter the genealogy of the
infector as a sample event at the top (oldest end) of the block on the
branch.
"""

from __future__ import annotations
import bisect
from enum import Enum

import numpy as np

from .TimeTree import TimeTree
from .BlockParameters import BlockConfiguration

#########################
#### EXCEPTION CLASS ####
#########################

class SegmentError(Exception):
    def __init__(self, message : str = "Error in segment bookkeeping") -> None:
        self.message = message
        super().__init__(self.message)


class IntervalType(Enum):
    """
    The type of event that ends an interval.
    """
    SAMPLE = 0
    COALESCENT = 1
    NOTHING = 2

# at equal times, lineages are added before they coalesce
_EVENT_RANK : dict[IntervalType, int] = {IntervalType.SAMPLE : 0,
                                         IntervalType.COALESCENT : 1,
                                         IntervalType.NOTHING : 2}

###############################
#### SEGMENT INTERVAL LIST ####
###############################

class SegmentIntervalList:
    """
    Event list and coalescent intervals of a single host.
    """

    def __init__(self, birth_time : float | None = None) -> None:
        """
        Args:
            birth_time (float | None, optional): infection time of the host
                                                 (a height). Defaults to None.
        Returns:
            N/A
        """
        self.birth_time : float | None = birth_time
        self._keys : list[tuple[float, int]] = []
        self._times : list[float] = []
        self._events : list[IntervalType] = []

        self._intervals : list[float] = []
        self._lineage_counts : list[int] = []
        self._interval_count : int = 0

    def add_event(self, time : float, event : IntervalType) -> None:
        """
        Insert an event, keeping the event list sorted by time. Events may
        arrive in any order.

        Args:
            time (float): height of the event.
            event (IntervalType): SAMPLE or COALESCENT.
        Returns:
            N/A
        """
        key = (time, _EVENT_RANK[event])
        if not self._keys or self._keys[-1] <= key:
            index = len(self._keys)
        else:
            index = bisect.bisect_right(self._keys, key)
        self._keys.insert(index, key)
        self._times.insert(index, time)
        self._events.insert(index, event)

    def get_times(self) -> list[float]:
        return list(self._times)

    def get_events(self) -> list[IntervalType]:
        return list(self._events)

    def get_event_count(self) -> int:
        return len(self._events)

    def calculate_intervals(self) -> None:
        """
        Derive interval widths and lineage counts from the event list.
        Simultaneous samples are merged into a single event, and an empty
        first interval (samples at the time of the first event) is dropped.

        Raises:
            SegmentError: if the segment has no events.
        Args:
            N/A
        Returns:
            N/A
        """
        if not self._times:
            raise SegmentError("Cannot compute intervals of an empty segment")

        event_count = len(self._events)
        intervals : list[float] = []
        lineage_counts : list[int] = []

        start = self._times[0]
        lineages = 0
        i = 0
        while i < event_count:
            added = 0
            removed = 0
            finish = self._times[i]

            while True:
                event = self._events[i]
                i += 1
                if event == IntervalType.SAMPLE:
                    added += 1
                else:
                    removed += 1
                    break
                if i >= event_count or self._times[i] != finish:
                    break

            if added > 0:
                if intervals or finish - start > 0:
                    intervals.append(finish - start)
                    lineage_counts.append(lineages)
                start = finish
            lineages += added

            if removed > 0:
                intervals.append(finish - start)
                lineage_counts.append(lineages)
                start = finish
            lineages -= removed

        self._intervals = intervals
        self._lineage_counts = lineage_counts
        self._interval_count = len(intervals)

    def get_interval_count(self) -> int:
        return self._interval_count

    def get_interval(self, i : int) -> float:
        """
        Args:
            i (int): interval index.
        Returns:
            float: the width of interval i.
        """
        if i < 0 or i >= self._interval_count:
            raise IndexError(f"Interval index {i} out of range")
        return self._intervals[i]

    def get_lineage_count(self, i : int) -> int:
        """
        Args:
            i (int): interval index.
        Returns:
            int: the number of lineages present during interval i.
        """
        if i < 0 or i >= self._interval_count:
            raise IndexError(f"Interval index {i} out of range")
        return self._lineage_counts[i]

    def get_coalescent_events(self, i : int) -> int:
        """
        Number of coalescences that end interval i. Negative values are
        sample events (lineages added).

        Args:
            i (int): interval index.
        Returns:
            int: lineage count of interval i minus that of interval i + 1
                 (minus 1 for the last interval).
        """
        if i < 0 or i >= self._interval_count:
            raise IndexError(f"Interval index {i} out of range")
        if i < self._interval_count - 1:
            return self._lineage_counts[i] - self._lineage_counts[i + 1]
        return self._lineage_counts[i] - 1

    def get_interval_type(self, i : int) -> IntervalType:
        events = self.get_coalescent_events(i)
        if events > 0:
            return IntervalType.COALESCENT
        if events < 0:
            return IntervalType.SAMPLE
        return IntervalType.NOTHING

    def get_total_duration(self) -> float:
        return self._times[-1] - self._times[0]

    def sample_groups(self) -> list[tuple[float, int]]:
        """
        Sample events grouped by time.

        Args:
            N/A
        Returns:
            list[tuple[float, int]]: (time, number of samples) pairs in
                                     increasing time.
        """
        groups : list[tuple[float, int]] = []
        for time, event in zip(self._times, self._events):
            if event != IntervalType.SAMPLE:
                continue
            if groups and groups[-1][0] == time:
                groups[-1] = (time, groups[-1][1] + 1)
            else:
                groups.append((time, 1))
        return groups

    def __str__(self) -> str:
        if not self._times:
            return "empty SegmentIntervalList"
        labels = ["S" if event == IntervalType.SAMPLE else "C"
                  for event in self._events]
        return " ".join(f"({label} {time:.4g})"
                        for label, time in zip(labels, self._times))

##################
#### BUILDING ####
##################

def collect_segments(tree : TimeTree,
                     colours : np.ndarray,
                     blocks : BlockConfiguration,
                     origin : float | None = None) \
                     -> dict[int, SegmentIntervalList]:
    """
    Build the segment of every colour present in the colouring.

    Every node contributes a SAMPLE (leaf) or COALESCENT (internal) event to
    the segment of its own colour. A branch with a change of colour adds a
    SAMPLE event to the parent colour at the block end, and sets the birth
    time of the child colour to the block start. The birth time of the
    colour at the root is the origin, or the root height without one.

    Args:
        tree (TimeTree): the time tree.
        colours (np.ndarray): a valid colouring.
        blocks (BlockConfiguration): per-branch block parameters.
        origin (float | None, optional): start of the outbreak (a height).
                                         Defaults to None.
    Returns:
        dict[int, SegmentIntervalList]: segments keyed by colour, in
                                        increasing colour order.
    """
    segments : dict[int, SegmentIntervalList] = {}
    for colour in sorted(set(int(c) for c in colours)):
        segments[colour] = SegmentIntervalList()

    for node in tree:
        nr = node.get_nr()
        colour = int(colours[nr])
        segment = segments[colour]
        segment.add_event(node.get_height(),
                          IntervalType.SAMPLE if node.is_leaf()
                          else IntervalType.COALESCENT)
        if node.is_root():
            continue

        parent_colour = int(colours[node.get_parent()])
        if colour != parent_colour:
            height = node.get_height()
            length = node.get_length()
            segments[parent_colour].add_event(height + blocks.get_end(nr) *
                                              length, IntervalType.SAMPLE)
            segment.birth_time = height + blocks.get_start(nr) * length

    root_colour = int(colours[tree.get_root().get_nr()])
    segments[root_colour].birth_time = origin if origin is not None \
                                       else tree.root_height()

    for segment in segments.values():
        segment.calculate_intervals()
    return segments
