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

import pytest

from proteintree.config import Enzyme
from proteintree.tags import tag_start_positions, get_tag_to_indexes_map, tag_pass


class CleavesAfterK:
    """Enzyme lookalike only offering the predicate."""

    def is_cleavage_site(self, previous_residue, current_residue):
        return previous_residue == 'K'


def test_tag_to_indexes_map():
    tag_map = get_tag_to_indexes_map("PEPTIDE", 3)
    assert tag_map == {"PEP": [0], "EPT": [1], "PTI": [2], "TID": [3], "IDE": [4]}


def test_repeated_tags():
    tag_map = get_tag_to_indexes_map("PEPTIDEPEPTIDE", 3)
    assert tag_map["PEP"] == [0, 7]
    assert tag_map["DEP"] == [5]
    # last tag ends at the protein c-terminus
    assert tag_map["IDE"] == [4, 11]
    assert sum(len(p) for p in tag_map.values()) == len("PEPTIDEPEPTIDE") - 3 + 1


def test_short_sequences():
    assert tag_start_positions("PE", 3) == []
    assert get_tag_to_indexes_map("PE", 3) == {}
    assert get_tag_to_indexes_map("", 3) == {}
    assert get_tag_to_indexes_map("PEP", 3) == {"PEP": [0]}


def test_enzyme_restricts_starts(lys_arg):
    assert tag_start_positions("AKPEPTIDE", 3, lys_arg) == [0, 2]
    assert get_tag_to_indexes_map("AKPEPTIDE", 3, lys_arg) == {"AKP": [0], "PEP": [2]}


def test_enzyme_start_too_close_to_terminus(lys_arg):
    # cleavage after the last K leaves no room for a full tag
    assert tag_start_positions("PEPTIDEKAA", 3, lys_arg) == [0]
    assert tag_start_positions("PEPTIDEKAAA", 3, lys_arg) == [0, 8]


def test_restraining_residue():
    assert tag_start_positions("AKPEKTIDE", 3, Enzyme.trypsin) == [0, 5]


def test_generic_predicate():
    assert tag_start_positions("AKPEPKTIDE", 3, CleavesAfterK()) == [0, 2, 6]
    assert get_tag_to_indexes_map("AKPEPKTIDE", 3, CleavesAfterK()) == \
        {"AKP": [0], "PEP": [2], "TID": [6]}


@pytest.mark.parametrize("sequence", ["MKPEPTIDERAAK", "KKKKKK", "PEPSINPEPK", "RPRPKD"])
def test_mask_and_predicate_agree(sequence):
    class PredicateOnly:
        def is_cleavage_site(self, previous_residue, current_residue):
            return Enzyme.trypsin.is_cleavage_site(previous_residue, current_residue)

    assert tag_start_positions(sequence, 2, Enzyme.trypsin) == \
        tag_start_positions(sequence, 2, PredicateOnly())


def test_tag_filter():
    tag_map = get_tag_to_indexes_map("PEPTIDEPEPTIDE", 3, tag_filter=lambda tag: tag[0] == 'P')
    assert tag_map == {"PEP": [0, 7], "PTI": [2, 9]}


def test_tag_pass():
    assert tag_pass("PEP", 1) == 0
    tags = ["PEP", "EPT", "PTI", "TID", "IDE", "AAA", "KKK", "WWW"]
    for n_passes in [2, 3, 5]:
        for tag in tags:
            p = tag_pass(tag, n_passes)
            assert 0 <= p < n_passes
            # stable between calls
            assert tag_pass(tag, n_passes) == p
