# Copyright (C) 2025  Technische Universitaet Berlin
#
# This library is free software; you can redistribute it and/or
# modify it under the terms of the GNU Lesser General Public
# License as published by the Free Software Foundation; either
# version 3 of the License, or (at your option) any later version.
#
# This library is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU
# Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public
# License along with this library; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301
# USA

"""
Nodes of the protein tree.

A node is either a leaf, mapping accessions to the positions where the node's sequence starts
in that protein, or an internal node, mapping the next residue to a child node. The depth of a
node is the length of the sequence leading to it.
"""
from proteintree import const


class NodeStateError(RuntimeError):
    """Raised when a leaf operation is used on an internal node or vice versa."""


def _merge_positions(existing, positions):
    """Return the sorted union of two position lists."""
    if not existing:
        return sorted(set(positions))
    return sorted(set(existing).union(positions))


def next_residues(sequence, positions, offset):
    """
    Group positions by the residue found at position + offset.

    Positions where the protein ends exactly at position + offset are grouped under
    const.TERMINUS.

    :param sequence: (str) protein sequence
    :param positions: (list of int) start positions
    :param offset: (int) distance between the start position and the residue to look at
    :return: (dict) residue -> list of start positions
    """
    result = {}
    length = len(sequence)
    for start in positions:
        index = start + offset
        if index < length:
            key = sequence[index]
        elif index == length:
            key = const.TERMINUS
        else:
            raise ValueError("Attempting to index after the protein terminus (%d > %d)."
                             % (index, length))
        indexes = result.get(key)
        if indexes is None:
            result[key] = [start]
        else:
            indexes.append(start)
    return result


class Node:
    """A node of the protein tree."""

    def __init__(self, depth, accessions=None):
        """
        Initialise a leaf Node.

        :param depth: (int) length of the sequence leading to this node
        :param accessions: (dict) initial accession -> positions content
        """
        self.depth = depth
        self.accessions = {} if accessions is None else accessions
        self.subtree = None
        self.store_index = None

    def __repr__(self):
        if self.subtree is not None:
            return "Node(depth=%d, children=%s)" % (self.depth, sorted(self.subtree))
        return "Node(depth=%d, accessions=%d, store_index=%s)" % (
            self.depth, len(self.accessions), self.store_index)

    def is_leaf(self):
        return self.subtree is None

    def is_evicted(self):
        """True for leaves whose content only exists in the index file."""
        return self.subtree is None and self.store_index is not None and not self.accessions

    def _check_leaf(self, operation):
        if self.subtree is not None:
            raise NodeStateError("%s is only possible on a leaf, node at depth %d has been split"
                                 % (operation, self.depth))

    def add_accession(self, accession, positions):
        """
        Add the positions of an accession to the leaf.

        Positions already known for the accession are merged with the new ones.

        :param accession: (str) protein accession
        :param positions: (list of int) positions where the node's sequence starts
        """
        self._check_leaf("add_accession")
        if self.is_evicted():
            raise NodeStateError("Node at depth %d has been saved and evicted, accessions can "
                                 "not be added to it" % self.depth)
        self.accessions[accession] = _merge_positions(self.accessions.get(accession),
                                                      positions)

    def get_accessions(self):
        """Return the in-memory accession -> positions map of the leaf."""
        self._check_leaf("get_accessions")
        return self.accessions

    def clear_accessions(self):
        """Drop the in-memory content of the leaf."""
        self._check_leaf("clear_accessions")
        self.accessions.clear()

    def set_index(self, offset):
        """Set the offset of the leaf content in the index file."""
        self._check_leaf("set_index")
        self.store_index = offset

    def get_subtree(self):
        """Return the residue -> child map (None for leaves)."""
        return self.subtree

    def get_size(self):
        """Return the number of distinct accessions in the leaves below this node."""
        if self.subtree is None:
            return len(self.accessions)
        return sum(node.get_size() for node in self.subtree.values())

    def leaves(self):
        """Iterate over all leaves below (or being) this node."""
        if self.subtree is None:
            yield self
        else:
            for node in self.subtree.values():
                yield from node.leaves()

    def split_node(self, max_node_size, max_peptide_size, sequence_provider):
        """
        Split the leaf into children keyed by the next residue.

        The leaf is only split if it holds more than max_node_size accessions and is not
        deeper than max_peptide_size; children are split recursively. Occurrences where the
        protein ends go to the const.TERMINUS child, which is never split further.

        :param max_node_size: (int) maximal number of accessions of a leaf
        :param max_peptide_size: (int) depth after which leaves are kept together
        :param sequence_provider: provider of the protein sequences
        :return: (bool) whether the node was split
        """
        self._check_leaf("split_node")
        if self.is_evicted():
            raise NodeStateError("Node at depth %d has been saved and evicted, its content has "
                                 "to be loaded before splitting" % self.depth)
        if len(self.accessions) <= max_node_size or self.depth >= max_peptide_size:
            return False

        subtree = {}
        for accession, positions in self.accessions.items():
            sequence = sequence_provider.get_sequence(accession)
            for residue, indexes in next_residues(sequence, positions, self.depth).items():
                node = subtree.get(residue)
                if node is None:
                    node = Node(self.depth + 1)
                    subtree[residue] = node
                node.add_accession(accession, indexes)

        self.subtree = subtree
        self.accessions = None
        self.store_index = None

        for residue, node in subtree.items():
            if residue != const.TERMINUS:
                node.split_node(max_node_size, max_peptide_size, sequence_provider)
        return True

    def get_sub_node(self, sequence):
        """
        Follow the residues of a sequence down from this node.

        :param sequence: (str) sequence starting with the residues leading to this node
        :return: (Node) the deepest node matching the sequence - a leaf shallower than the
            sequence or the node reached after len(sequence) residues; None if a residue has no
            child
        """
        node = self
        while node.subtree is not None and node.depth < len(sequence):
            node = node.subtree.get(sequence[node.depth])
            if node is None:
                return None
        return node

    def get_sub_nodes(self, sequence, sequence_matching=None):
        """
        Follow the residues of a sequence down from this node, branching on every child that
        matches a residue.

        :param sequence: (str) sequence starting with the residues leading to this node
        :param sequence_matching: (SequenceMatchingConfig) residue comparison, exact if None
        :return: (generator) the nodes get_sub_node would return for every matching sequence
        """
        if self.subtree is None or self.depth >= len(sequence):
            yield self
            return
        if sequence_matching is None:
            residues = [sequence[self.depth]]
        else:
            residues = sequence_matching.residues_matching(sequence[self.depth])
        for residue in residues:
            node = self.subtree.get(residue)
            if node is not None:
                yield from node.get_sub_nodes(sequence, sequence_matching)
