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

"""Queries against a built protein tree."""
import threading
from collections import OrderedDict
from itertools import product
from proteintree import const
from proteintree.node import NodeStateError


def _merge_mappings(result, mapping):
    """Merge an accession -> positions mapping into result (sorted, without duplicates)."""
    for accession, positions in mapping.items():
        existing = result.get(accession)
        if existing is None:
            result[accession] = sorted(set(positions))
        else:
            result[accession] = sorted(set(existing).union(positions))
    return result


class ProteinTree:
    """
    Map of tag -> Node with most leaf contents stored in the index file.

    Nodes are looked up by their tag; the accessions and positions of a leaf are returned from
    memory if still resident, otherwise read back from the index file.
    """

    def __init__(self, nodes, components, sequence_provider, config, report=None):
        """
        Initialise the ProteinTree.

        :param nodes: (dict) tag -> Node
        :param components: (ProteinTreeComponents) owner of the index file
        :param sequence_provider: provider of the protein sequences
        :param config: (TreeConfig) parameters the tree was built with
        :param report: (BuildReport) counters of the build
        """
        self.nodes = nodes
        self.components = components
        self.sequence_provider = sequence_provider
        self.config = config
        self.report = report
        self._cache = OrderedDict()
        self._cache_lock = threading.Lock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __len__(self):
        return len(self.nodes)

    def __contains__(self, tag):
        return tag in self.nodes

    @property
    def initial_tag_size(self):
        return self.config.initial_tag_size

    def tags(self):
        """Return all tags of the tree."""
        return list(self.nodes.keys())

    def get(self, tag):
        """Return the node of a tag or None."""
        return self.nodes.get(tag)

    def resolve(self, node):
        """
        Return the accession -> positions content of a leaf.

        :param node: (Node) a leaf or None
        :return: (dict) the content, None if node is None
        :raises NodeStateError: for internal nodes - descend into node.subtree instead
        :raises NodeNotFoundError: if an evicted leaf can not be read back
        """
        if node is None:
            return None
        if node.subtree is not None:
            raise NodeStateError("Node at depth %d has been split, resolve its subtree instead"
                                 % node.depth)
        if node.is_evicted():
            return self.components.read_accessions(node.store_index)
        return node.accessions

    def resolve_tag(self, tag):
        """Resolve the node of a tag, None if the tag is not in the tree."""
        return self.resolve(self.get(tag))

    def resolve_all(self, node):
        """
        Return the content of all leaves below a node merged together.

        :param node: (Node) any node or None
        :return: (dict) accession -> sorted positions, None if node is None
        """
        if node is None:
            return None
        result = {}
        for leaf in node.leaves():
            _merge_mappings(result, self.resolve(leaf))
        return result

    def _match_in_proteins(self, mapping, peptide, sequence_matching):
        """Keep the positions where the protein really continues with the peptide."""
        result = {}
        for accession, positions in mapping.items():
            sequence = self.sequence_provider.get_sequence(accession)
            if sequence_matching.is_exact:
                matches = [p for p in positions if sequence.startswith(peptide, p)]
            else:
                matches = [p for p in positions if p + len(peptide) <= len(sequence) and
                           all(sequence_matching.matches(residue, sequence[p + i])
                               for i, residue in enumerate(peptide))]
            if matches:
                result[accession] = matches
        return result

    def _initial_tags(self, peptide, sequence_matching):
        """Return the tags of the tree the first residues of a peptide match."""
        if sequence_matching.is_exact:
            tags = [peptide[:self.initial_tag_size]]
        else:
            variants = [sequence_matching.residues_matching(residue)
                        for residue in peptide[:self.initial_tag_size]]
            tags = ["".join(residues) for residues in product(*variants)]
        return [tag for tag in tags if tag in self.nodes]

    def _cache_get(self, key):
        with self._cache_lock:
            mapping = self._cache.get(key)
            if mapping is not None:
                self._cache.move_to_end(key)
            return mapping

    def _cache_put(self, key, mapping):
        cache_size = self.config.query_cache_size
        if cache_size == 0:
            return
        with self._cache_lock:
            self._cache[key] = mapping
            self._cache.move_to_end(key)
            while len(self._cache) > cache_size:
                self._cache.popitem(last=False)

    def empty_cache(self):
        with self._cache_lock:
            self._cache.clear()

    def get_protein_mapping(self, peptide, sequence_matching=None):
        """
        Find all occurrences of a peptide.

        With indistinguishable matching every residue of the peptide is compared as set up in
        the SequenceMatchingConfig and the positions of all matching sequences are merged.

        :param peptide: (str) peptide sequence, at least initial_tag_size long
        :param sequence_matching: (SequenceMatchingConfig) residue comparison, the
            sequence_matching of the config if None
        :return: (dict) accession -> sorted start positions of the peptide
        """
        if len(peptide) < self.initial_tag_size:
            raise ValueError("Peptide (%s) should be at least of length %d."
                             % (peptide, self.initial_tag_size))
        if sequence_matching is None:
            sequence_matching = self.config.sequence_matching
        key = (peptide, sequence_matching.hash())
        mapping = self._cache_get(key)
        if mapping is None:
            mapping = {}
            for tag in self._initial_tags(peptide, sequence_matching):
                for node in self.get(tag).get_sub_nodes(peptide, sequence_matching):
                    if node.depth >= len(peptide):
                        _merge_mappings(mapping, self.resolve_all(node))
                    else:
                        _merge_mappings(mapping, self._match_in_proteins(
                            self.resolve(node), peptide, sequence_matching))
            self._cache_put(key, mapping)
        return {accession: list(positions) for accession, positions in mapping.items()}

    def get_matched_positions(self, peptide, accession, sequence_matching=None):
        """Return the start positions of a peptide in one protein."""
        return self.get_protein_mapping(peptide, sequence_matching).get(accession, [])

    def peptides(self):
        """
        Iterate over the sequences leading to the ends of the branches of the tree.

        Every leaf gives the sequence leading to it, a protein terminus the sequence it ends.
        The sequences come in alphabetical order.
        """
        for tag in sorted(self.nodes):
            yield from self._branch_ends(tag, self.nodes[tag])

    def _branch_ends(self, sequence, node):
        if node.subtree is None:
            yield sequence
            return
        for residue in sorted(node.subtree):
            if residue == const.TERMINUS:
                yield sequence
            else:
                yield from self._branch_ends(sequence + residue, node.subtree[residue])

    def get_protein_length(self, accession):
        """Return the length of a protein, from the build log if it was loaded."""
        length = self.components.get_protein_length(accession)
        if length is None:
            length = len(self.sequence_provider.get_sequence(accession))
        return length

    def close(self):
        """Drop cached queries and delete the index file."""
        self.empty_cache()
        self.components.close()
