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
Fixtures shared by all tests of the protein tree.

pytest discovers the fixtures of this file automatically for every test in the directory.
"""

import pytest
from proteintree.config import TreeConfig, Enzyme
from proteintree.sequences import DictSequenceProvider


@pytest.fixture()
def lys_arg():
    # cleaves after K and R without the proline rule
    return Enzyme(name='lys-arg', cterminal_of=['K', 'R'])


@pytest.fixture()
def sequences():
    return {
        "P1": "PEPTIDEPEPTIDE",
        "P2": "MKPEPTIDERAAK",
        "P3": "PEPSINPEPK",
        "P4": "AAAPEPAAA",
    }


@pytest.fixture()
def provider(sequences):
    return DictSequenceProvider(sequences, name="test_db")


@pytest.fixture()
def tree_config(tmpdir):
    # small tree written to the pytest temp folder
    return TreeConfig(initial_tag_size=3, max_node_size=1, max_peptide_size=6,
                      loader_threads=2, saver_threads=2, index_folder=str(tmpdir))
