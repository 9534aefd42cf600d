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

import json
import os
import re

import numpy as np
import pytest
import yaml
from numpy.testing import assert_array_equal

from proteintree.config import Setting, ListSetting, ConfigGroup, Enzyme, FastaConfig, \
    SequenceMatchingConfig, TreeConfig, ConfigReader, stringhash


def test_config_system():
    """Test the Setting/ConfigGroup machinery."""

    class SubConfig(ConfigGroup):
        v1 = Setting(int, 1)
        v2 = Setting(str, "hello")

    class TestConfig(ConfigGroup):
        i1 = Setting(int, '2')
        f1 = Setting(float, 4)
        s1 = Setting(str, 5)
        l1 = ListSetting(int, [1, "2"])
        sub = Setting(SubConfig, SubConfig(v1=2))
        v_list = Setting(int, valid_values=[1, 2, 3], default=2)
        v_re = Setting(str, valid_values=re.compile('[A-z]+$'), required=False)
        v_required = Setting(str, required=True)
        i_min = Setting(int, 5, min_value=1)

    config = TestConfig(v_required='x')
    assert config.i1 == 2
    assert config.f1 == 4.0 and type(config.f1) is float
    assert config.s1 == "5"
    assert config.l1 == [1, 2]
    assert config.sub.v1 == 2
    assert config.sub.v2 == "hello"
    assert config.get('v_re') is None
    assert 'v_re' not in config
    assert 'v_required' in config

    with pytest.raises(AttributeError):
        TestConfig()

    with pytest.raises(AttributeError):
        config.v_re

    with pytest.raises(KeyError):
        TestConfig(v_required='x', nonexistent=1)

    with pytest.raises(TypeError):
        Setting(int, 'three')

    with pytest.raises(ValueError):
        TestConfig(v_required='x', v_list=4)

    with pytest.raises(ValueError):
        TestConfig(v_required='x', v_re="Ab3")

    with pytest.raises(ValueError):
        TestConfig(v_required='x', i_min=0)

    # min_value not supported for str type
    with pytest.raises(TypeError):
        Setting(str, "a", min_value=1)


def test_tree_config_defaults():
    config = TreeConfig()
    assert config.initial_tag_size == 3
    assert config.max_node_size == 500
    assert config.max_peptide_size == 10
    assert config.removal_batch_size == 1000
    assert config.n_passes == 1
    assert config.evict
    assert config.get('index_folder') is None
    assert config.get('enzyme') is None
    assert isinstance(config.fasta, FastaConfig)


def test_tree_config_validation():
    with pytest.raises(ValueError):
        TreeConfig(initial_tag_size=6, max_peptide_size=5)

    with pytest.raises(ValueError):
        TreeConfig(loader_threads=0)

    config = TreeConfig()
    with pytest.raises(ValueError):
        config.updated(initial_tag_size=12)

    with pytest.raises(KeyError):
        config.updated(unknown=1)


def test_tree_config_updated():
    config = TreeConfig(max_node_size=10)
    updated = config.updated(max_node_size=None, initial_tag_size=4, saver_threads=8)
    # None values are ignored
    assert updated.max_node_size == 10
    assert updated.initial_tag_size == 4
    assert updated.saver_threads == 8
    # the original is unchanged
    assert config.initial_tag_size == 3
    assert config.saver_threads == 2


def test_tree_config_hash():
    assert TreeConfig().hash() == TreeConfig().hash()
    assert TreeConfig().hash() != TreeConfig(initial_tag_size=4).hash()
    assert TreeConfig().hash() != TreeConfig(enzyme=Enzyme.trypsin).hash()


def test_stringhash_is_stable():
    assert stringhash("PEP") == hash((80, 69, 80))
    assert stringhash("PEP") != stringhash("EPP")


def test_enzyme_predicate():
    trypsin = Enzyme.trypsin
    assert trypsin.is_cleavage_site('K', 'A')
    assert trypsin.is_cleavage_site('R', 'E')
    assert not trypsin.is_cleavage_site('K', 'P')
    assert not trypsin.is_cleavage_site('A', 'K')

    asp_n = Enzyme.asp_n
    assert asp_n.is_cleavage_site('A', 'D')
    assert not asp_n.is_cleavage_site('D', 'A')


def test_enzyme_cleavage_mask():
    mask = Enzyme.trypsin.cleavage_mask("AKPEKTRD")
    #                  A     K      P      E     K      T     R      D
    assert_array_equal(mask, [True, False, False, False, False, True, False, True])

    mask = Enzyme.asp_n.cleavage_mask("ADDA")
    assert_array_equal(mask, [True, True, True, False])

    assert Enzyme.trypsin.cleavage_mask("").size == 0


def test_enzyme_cleavage_mask_matches_predicate():
    enzyme = Enzyme(name='mixed', cterminal_of=['K'], nterminal_of=['D'], restraining=['P'])
    sequence = "MKDPKAPDKKDEPDK"
    mask = enzyme.cleavage_mask(sequence)
    expected = [True] + [enzyme.is_cleavage_site(sequence[i - 1], sequence[i])
                         for i in range(1, len(sequence))]
    assert_array_equal(mask, np.array(expected))


def test_enzyme_invalid():
    with pytest.raises(ValueError):
        Enzyme(name='nothing')

    with pytest.raises(ValueError):
        Enzyme(name='bad', cterminal_of=['KR'])


def test_enzyme_from_name():
    config = TreeConfig(enzyme='trypsin')
    assert config.enzyme is Enzyme.trypsin

    config = TreeConfig(enzyme={'name': 'lys-c', 'cterminal_of': ['K']})
    assert config.enzyme.name == 'lys-c'
    assert config.enzyme.is_cleavage_site('K', 'P')


def test_sequence_matching():
    exact = SequenceMatchingConfig.exact
    assert exact.is_exact
    assert exact.residues_matching('I') == ['I']
    assert exact.matches('I', 'I')
    assert not exact.matches('I', 'L')
    assert not exact.matches('X', 'A')

    matching = SequenceMatchingConfig.indistinguishable_amino_acids
    assert not matching.is_exact
    assert matching.residues_matching('I') == ['I', 'L', 'X']
    assert matching.residues_matching('L') == ['I', 'L', 'X']
    assert matching.residues_matching('K') == ['K', 'X']
    assert len(matching.residues_matching('X')) == 23
    assert matching.matches('L', 'I')
    assert matching.matches('X', 'W')
    # a wildcard in the protein matches as well
    assert matching.matches('I', 'X')
    assert not matching.matches('I', 'V')


def test_sequence_matching_settings():
    config = TreeConfig(sequence_matching={'matching_type': 'indistinguishable',
                                           'indistinguishable': ['IL', 'DN']})
    assert config.sequence_matching.residues_matching('D') == ['D', 'N', 'X']
    assert TreeConfig().sequence_matching == SequenceMatchingConfig.exact
    assert TreeConfig(sequence_matching='indistinguishable_amino_acids').sequence_matching \
        is SequenceMatchingConfig.indistinguishable_amino_acids
    assert SequenceMatchingConfig.exact.hash() != \
        SequenceMatchingConfig.indistinguishable_amino_acids.hash()

    with pytest.raises(ValueError):
        SequenceMatchingConfig(matching_type='fuzzy')
    with pytest.raises(ValueError):
        SequenceMatchingConfig(wildcard='XX')
    with pytest.raises(ValueError):
        SequenceMatchingConfig(indistinguishable=['I1'])


def test_config_reader(tmpdir):
    settings = {
        "initial_tag_size": 4,
        "max_node_size": 20,
        "loader_threads": 3,
        "enzyme": {"name": "trypsin", "cterminal_of": ["K", "R"], "restraining": ["P"]},
    }

    json_file = os.path.join(str(tmpdir), "config.json")
    with open(json_file, "w") as f:
        json.dump(settings, f)
    yaml_file = os.path.join(str(tmpdir), "config.yaml")
    with open(yaml_file, "w") as f:
        yaml.dump(settings, f)
    guess_file = os.path.join(str(tmpdir), "config.txt")
    with open(guess_file, "w") as f:
        yaml.dump(settings, f)

    for file_name in [json_file, yaml_file, guess_file]:
        config = ConfigReader.load_file(file_name)
        assert config.initial_tag_size == 4
        assert config.max_node_size == 20
        assert config.loader_threads == 3
        assert config.enzyme == Enzyme.trypsin

    assert ConfigReader.loads_json(json.dumps(settings)).max_node_size == 20
    assert ConfigReader.loads_yaml(yaml.dump(settings)).max_node_size == 20


def test_config_write_roundtrip(tmpdir):
    config = TreeConfig(initial_tag_size=4, evict=False, enzyme=Enzyme.trypsin)

    assert config.to_dict() == {
        "initial_tag_size": 4,
        "evict": False,
        "enzyme": {"name": "trypsin", "cterminal_of": ["K", "R"], "restraining": ["P"]},
    }

    json_file = os.path.join(str(tmpdir), "out.json")
    config.write(json_file)
    assert ConfigReader.load_file(json_file) == config

    yaml_file = os.path.join(str(tmpdir), "out.yaml")
    config.write_yaml(yaml_file)
    assert ConfigReader.load_file(yaml_file) == config

    assert TreeConfig.from_json(config.to_json()) == config
