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

Rooted, binary, time-scaled trees stored as an arena of nodes. Every node is
addressed by a stable integer index, and parent/child relationships are kept
as indices rather than object references. Leaves always occupy the indices
0..L-1, so that the index of a leaf doubles as the colour of the sampled host
it represents.

Heights are measured backwards in time: the youngest leaf of a tree parsed
from newick sits at height 0, and the root is the oldest node.
"""

from __future__ import annotations
from io import StringIO
from typing import Iterator

import networkx as nx
from Bio import Phylo

HEIGHT_TOLERANCE : float = 1e-9

#########################
#### EXCEPTION CLASS ####
#########################

class TimeTreeError(Exception):
    """
    Raised whenever a time tree is constructed from inconsistent input
    (non-binary nodes, misplaced leaves, negative branch lengths, etc).
    """

    def __init__(self, message : str = "Error building a time tree") -> None:
        """
        Create a TimeTreeError with a custom message.

        Args:
            message (str, optional): The error message. Defaults to
                                     "Error building a time tree".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

###################
#### TREE NODE ####
###################

class TreeNode:
    """
    A single node of a TimeTree. Relationships are stored as indices into the
    owning tree's node arena.
    """

    def __init__(self,
                 nr : int,
                 height : float,
                 parent : int | None = None,
                 children : list[int] | None = None,
                 name : str | None = None) -> None:
        """
        Args:
            nr (int): Index of this node in the arena.
            height (float): Height (age) of the node.
            parent (int | None, optional): Index of the parent, None for the
                                           root. Defaults to None.
            children (list[int] | None, optional): Indices of the children.
                                                   Defaults to None (a leaf).
            name (str | None, optional): A label. Defaults to None.
        Returns:
            N/A
        """
        self.nr : int = nr
        self.height : float = float(height)
        self.parent : int | None = parent
        self.children : list[int] = list(children) if children else []
        self.name : str | None = name
        self.length : float = 0.0

    def get_nr(self) -> int:
        return self.nr

    def get_height(self) -> float:
        return self.height

    def get_length(self) -> float:
        """
        Length of the branch above this node (0 for the root).

        Args:
            N/A
        Returns:
            float: parent height - node height.
        """
        return self.length

    def get_parent(self) -> int | None:
        return self.parent

    def get_children(self) -> list[int]:
        return self.children

    def get_name(self) -> str | None:
        return self.name

    def is_leaf(self) -> bool:
        return len(self.children) == 0

    def is_root(self) -> bool:
        return self.parent is None

    def __repr__(self) -> str:
        return f"TreeNode({self.nr}, height={self.height}, " \
               f"parent={self.parent}, children={self.children})"

###################
#### TIME TREE ####
###################

class TimeTree:
    """
    A rooted binary time tree with 2L - 1 nodes for L leaves.

    The tree is read-only once constructed. Likelihood computations address
    nodes exclusively by index.
    """

    def __init__(self,
                 parents : list[int | None],
                 heights : list[float],
                 names : list[str] | None = None) -> None:
        """
        Build a tree from a parent array and a height array.

        Raises:
            TimeTreeError: if the arrays do not describe a rooted binary tree
                           with leaves at indices 0..L-1 and non-negative
                           branch lengths.
        Args:
            parents (list[int | None]): parents[i] is the index of the parent
                                        of node i; None (or -1) marks the
                                        root.
            heights (list[float]): heights[i] is the height of node i.
            names (list[str] | None, optional): Node labels. Defaults to None.
        Returns:
            N/A
        """
        if len(parents) != len(heights):
            raise TimeTreeError("parents and heights must have equal length")
        if names is not None and len(names) != len(parents):
            raise TimeTreeError("names must have one entry per node")

        node_count = len(parents)
        self._nodes : list[TreeNode] = []
        for i in range(node_count):
            parent = parents[i]
            if parent is not None and parent < 0:
                parent = None
            name = names[i] if names is not None else None
            self._nodes.append(TreeNode(i, heights[i], parent, None, name))

        roots = [node.nr for node in self._nodes if node.parent is None]
        if len(roots) != 1:
            raise TimeTreeError(f"A tree needs exactly one root, found "
                                f"{len(roots)}")
        self._root : int = roots[0]

        for node in self._nodes:
            if node.parent is not None:
                if node.parent >= node_count or node.parent == node.nr:
                    raise TimeTreeError(f"Node {node.nr} has an invalid "
                                        f"parent index {node.parent}")
                self._nodes[node.parent].children.append(node.nr)

        leaf_count = sum(1 for node in self._nodes if node.is_leaf())
        if node_count != 2 * leaf_count - 1:
            raise TimeTreeError(f"A binary tree with {leaf_count} leaves must "
                                f"have {2 * leaf_count - 1} nodes, "
                                f"found {node_count}")
        self._leaf_count : int = leaf_count

        for node in self._nodes:
            if node.is_leaf() and node.nr >= leaf_count:
                raise TimeTreeError(f"Leaf {node.nr} must have an index "
                                    f"below {leaf_count}")
            if not node.is_leaf() and len(node.children) != 2:
                raise TimeTreeError(f"Internal node {node.nr} has "
                                    f"{len(node.children)} children, "
                                    "expected 2")
            if node.parent is not None:
                length = self._nodes[node.parent].height - node.height
                if length < -HEIGHT_TOLERANCE:
                    raise TimeTreeError(f"Node {node.nr} is older than its "
                                        "parent")
                node.length = max(length, 0.0)

        # every node must hang from the root
        if len(self.preorder()) != node_count:
            raise TimeTreeError("Parent array contains a cycle")

    @classmethod
    def from_newick(cls, newick_str : str) -> TimeTree:
        """
        Parse a rooted binary newick string with branch lengths.

        Leaves are numbered in reading order, internal nodes in post-order
        and the root receives the last index.

        Raises:
            TimeTreeError: if the string is not a binary tree.
        Args:
            newick_str (str): A newick string, e.g. "((A:1,B:1):1,C:2);"
        Returns:
            TimeTree: the parsed tree.
        """
        try:
            bio_tree = Phylo.read(StringIO(newick_str), "newick")
        except Exception as err:
            raise TimeTreeError(f"Could not parse newick string: {err}") \
                from err

        # Depth from the root, ignoring any branch length on the root itself
        depth : dict[int, float] = {id(bio_tree.root) : 0.0}
        stack = [bio_tree.root]
        while stack:
            clade = stack.pop()
            if len(clade.clades) not in (0, 2):
                raise TimeTreeError("Only binary trees are supported")
            for child in clade.clades:
                depth[id(child)] = depth[id(clade)] + \
                                   (child.branch_length or 0.0)
                stack.append(child)
        max_depth = max(depth.values())

        terminals = bio_tree.get_terminals()
        internals = [clade for clade in bio_tree.find_clades(order="postorder")
                     if not clade.is_terminal()]
        ordered = terminals + internals
        index = {id(clade) : i for i, clade in enumerate(ordered)}

        parents : list[int | None] = [None] * len(ordered)
        for clade in internals:
            for child in clade.clades:
                parents[index[id(child)]] = index[id(clade)]
        heights = [max_depth - depth[id(clade)] for clade in ordered]
        names = [clade.name for clade in ordered]

        return cls(parents, heights, names)

    def get_node_count(self) -> int:
        return len(self._nodes)

    def get_leaf_node_count(self) -> int:
        return self._leaf_count

    def get_internal_node_count(self) -> int:
        return len(self._nodes) - self._leaf_count

    def get_root(self) -> TreeNode:
        return self._nodes[self._root]

    def get_node(self, nr : int) -> TreeNode:
        return self._nodes[nr]

    def get_nodes(self) -> list[TreeNode]:
        return list(self._nodes)

    def root_height(self) -> float:
        return self._nodes[self._root].height

    def total_length(self) -> float:
        """
        Sum of all branch lengths in the tree.

        Args:
            N/A
        Returns:
            float: the tree length.
        """
        return sum(node.length for node in self._nodes)

    def preorder(self) -> list[int]:
        """
        Node indices in pre-order (parents before children), children visited
        in stored order.

        Args:
            N/A
        Returns:
            list[int]: node indices.
        """
        order : list[int] = []
        stack = [self._root]
        while stack:
            nr = stack.pop()
            order.append(nr)
            stack.extend(reversed(self._nodes[nr].children))
        return order

    def postorder(self) -> list[int]:
        """
        Node indices in post-order (children before parents).

        Args:
            N/A
        Returns:
            list[int]: node indices.
        """
        return list(reversed(self._reverse_postorder()))

    def _reverse_postorder(self) -> list[int]:
        order : list[int] = []
        stack = [self._root]
        while stack:
            nr = stack.pop()
            order.append(nr)
            stack.extend(self._nodes[nr].children)
        return order

    def __iter__(self) -> Iterator[TreeNode]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def to_networkx(self) -> nx.DiGraph:
        """
        Export the tree as a networkx DiGraph with edges from parent to child.
        Node attributes "height" and "name" are attached.

        Args:
            N/A
        Returns:
            nx.DiGraph: the tree as a directed graph.
        """
        graph = nx.DiGraph()
        for node in self._nodes:
            graph.add_node(node.nr, height = node.height, name = node.name)
        for node in self._nodes:
            if node.parent is not None:
                graph.add_edge(node.parent, node.nr, length = node.length)
        return graph
