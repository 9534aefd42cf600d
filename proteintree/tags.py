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

"""Extraction of the fixed length tags that make up the first level of the tree."""
import numpy as np
from proteintree.config import stringhash


def tag_start_positions(sequence, initial_tag_size, enzyme=None):
    """
    Return the positions where a tag may start.

    A position is a tag start if it is the protein n-terminus or directly follows a cleavage site
    of the enzyme, and a full tag fits between it and the protein c-terminus.

    :param sequence: (str) protein sequence
    :param initial_tag_size: (int) length of the tags
    :param enzyme: enzyme with an is_cleavage_site method or None to use every position
    :return: (list of int) sorted start positions
    """
    n_starts = len(sequence) - initial_tag_size + 1
    if n_starts <= 0:
        return []
    if enzyme is None:
        return list(range(n_starts))

    if hasattr(enzyme, "cleavage_mask"):
        mask = enzyme.cleavage_mask(sequence)[:n_starts]
        return np.flatnonzero(mask).tolist()

    # generic predicate
    return [i for i in range(n_starts)
            if i == 0 or enzyme.is_cleavage_site(sequence[i - 1], sequence[i])]


def get_tag_to_indexes_map(sequence, initial_tag_size, enzyme=None, tag_filter=None):
    """
    Map every tag of a protein to the positions it is found at.

    :param sequence: (str) protein sequence
    :param initial_tag_size: (int) length of the tags
    :param enzyme: enzyme restricting tag starts or None
    :param tag_filter: (callable) only tags for which this returns True are kept
    :return: (dict) tag -> list of positions (ascending)
    """
    tag_to_indexes = {}
    for i in tag_start_positions(sequence, initial_tag_size, enzyme):
        tag = sequence[i:i + initial_tag_size]
        if tag_filter is not None and not tag_filter(tag):
            continue
        indexes = tag_to_indexes.get(tag)
        if indexes is None:
            tag_to_indexes[tag] = [i]
        else:
            indexes.append(i)
    return tag_to_indexes


def tag_pass(tag, n_passes):
    """Return the pass (0 <= pass < n_passes) in which a tag gets indexed."""
    if n_passes <= 1:
        return 0
    return stringhash(tag) % n_passes
