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

"""Configuration for building and querying a protein tree."""
import json
import yaml
import re
import copy
import numpy as np
from memoized_property import memoized_property
from proteintree import const

# Unique sentinel, used to allow None to be a valid default for a setting.
NO_DEFAULT = object()


def stringhash(s):
    """
    Create a stable hash code for strings.

    hash(str) is salted per interpreter run, hashing the tuple of code points is not. Tags are
    partitioned into passes with this, so it has to give the same result in every thread and run.
    """
    return hash(tuple(ord(x) for x in s))


class Setting:
    """A setting supported by the config system."""

    def __init__(self, type, default=NO_DEFAULT, valid_values=None, required=True, min_value=None):
        """
        Initialise the Setting.

        :param type: Python type expected for this setting.
        :param default: Default value for this setting.
        :param valid_values: Tuple of accepted values, re pattern, or None to accept any value.
        :param required: (bool) whether the setting has to be given if there is no default
        :param min_value: Minimum value of setting (for float or int types)
        """
        self.type = type
        self.valid_values = valid_values
        if min_value is not None and not any([issubclass(self.type, int),
                                              issubclass(self.type, float)]):
            raise TypeError("min_value is only supported for int and float type.")
        self.min_value = min_value
        if default is not NO_DEFAULT:
            try:
                self.default = self.accept(default)
            except TypeError:
                raise TypeError("Default '%s' is not valid and could not be coerced "
                                "into the expected type (%s)" % (repr(default),
                                                                 repr(self.type))) from None
            self.required = False
        else:
            self.required = required

    def accept(self, value):
        """
        Coerce a value and check that it is valid.

        :param value: (mixed) value to check
        :return: the coerced value
        """
        coerced_value = self.coerce(value)
        if self.min_value is not None and coerced_value < self.min_value:
            raise ValueError(f'{coerced_value} is below min_value({self.min_value})!')
        if self.valid_values is not None:
            if isinstance(self.valid_values, re.Pattern):
                if self.valid_values.match(coerced_value) is None:
                    raise ValueError(f'{coerced_value} is not valid!'
                                     f' Valid values need to match: {self.valid_values.pattern}')
            elif coerced_value not in self.valid_values:
                raise ValueError(f'{coerced_value} is not valid!'
                                 f' Valid values are: {self.valid_values}')
        return coerced_value

    def coerce(self, value):
        """
        Coerce a value into the correct type.

        Strings naming a predefined instance on the type (e.g. 'trypsin' for Enzyme) are
        resolved to that instance.

        :param value: (mixed) value to coerce
        :return: (mixed) coerced value
        """
        if isinstance(value, self.type):
            return value
        try:
            if isinstance(value, dict):
                return self.type(**value)
            elif isinstance(value, str) and value in self.type.__dict__:
                return self.type.__dict__[value]
            else:
                return self.type(value)
        except ValueError:
            raise TypeError from None

    def hash(self, value):
        """
        Create a hash for a value.

        :param value: (mixed) value to create hash for
        :return: (int) hash of the value
        """
        if issubclass(self.type, ConfigGroup):
            return value.hash()
        elif issubclass(self.type, str):
            return stringhash(value)
        else:
            return hash(value)


class ListSetting(Setting):
    """A Setting with a list of values supported by the config system."""

    def accept(self, values):
        """
        Check all elements of the ListSetting.

        A single value is turned into a list with one element.

        :param values: (list) values to check
        :return: (list) coerced values
        """
        if not isinstance(values, (list, tuple)):
            values = [values]
        return [super(ListSetting, self).accept(value) for value in values]

    def hash(self, value):
        """
        Create a hash.

        :return: (int) hash
        """
        if issubclass(self.type, ConfigGroup):
            return hash(tuple(x.hash() for x in value))
        elif issubclass(self.type, str):
            return hash(tuple(stringhash(x) for x in value))
        else:
            return hash(tuple(value))


class ConfigMeta(type):
    """Metaclass used to define configuration groups."""

    def __new__(cls, name, bases, attributes):
        """Create a new instance."""
        settings = {k: a for k, a in attributes.items() if isinstance(a, Setting)}
        others = {k: a for k, a in attributes.items() if k not in settings}
        defaults = {k: s.default for k, s in settings.items() if hasattr(s, 'default')}
        required = set([k for k, s in settings.items() if s.required])
        new_attributes = dict(_settings=settings, _defaults=defaults, _required=required,
                              **others)
        return type.__new__(cls, name, bases, new_attributes)


class ConfigGroup(metaclass=ConfigMeta):
    """Base class for configuration groups."""

    def __init__(self, **kwargs):
        """Initialise the ConfigGroup."""
        self._values = {}
        for key, value in kwargs.items():
            if key not in self._settings:
                raise KeyError("Unknown setting '%s'" % key)
            setattr(self, key, value)

        # transfer defaults to those values that are not set explicitly
        for k, v in self._defaults.items():
            if k not in kwargs.keys():
                setattr(self, k, copy.deepcopy(v))

        for setting in self._required:
            if setting not in kwargs.keys():
                raise AttributeError("'%s' is required but not defined" % setting) from None

    def __setattr__(self, key, value):
        """Set the value of a Setting."""
        if key.startswith('_') or key not in self._settings:
            super(ConfigGroup, self).__setattr__(key, value)
            return
        setting = self._settings[key]
        try:
            self._values[key] = setting.accept(value)
        except TypeError:
            raise TypeError("Value '%s' is not valid for '%s' and could not be coerced "
                            "into the expected type (%s)" % (repr(value), key,
                                                             repr(setting.type))) from None
        except ValueError:
            raise ValueError("Value '%s' is not valid for '%s'" % (repr(value), key)) from None

    def __contains__(self, key):
        """Check if a Setting has a value in the ConfigGroup."""
        return key in self._values

    def __getattr__(self, key):
        """Get the value for a Setting."""
        if key.startswith('_') or key not in self._settings:
            raise AttributeError(key)
        elif key in self._values:
            return self._values[key]
        else:
            raise AttributeError(key)

    def __eq__(self, other):
        """Check if two ConfigGroups hold the same values."""
        if type(other) is type(self):
            return self._values == other._values
        return False

    def get(self, key, default=None):
        """Return the value of an optional Setting or default if it was never set."""
        return self._values.get(key, default)

    def hash(self):
        """
        Create a hash over all values.

        :return: (int) hash
        """
        value_hashes = [(stringhash(name), self._settings[name].hash(value))
                        for name, value in self._values.items()]
        return hash(frozenset(value_hashes))

    @classmethod
    def from_json(cls, json_string):
        """Create a ConfigGroup from a JSON string."""
        args = json.loads(json_string)
        return cls(**args)

    @classmethod
    def from_yaml(cls, yaml_string):
        """Create a ConfigGroup from a YAML string."""
        args = yaml.safe_load(yaml_string)
        return cls(**args)

    def to_dict(self, excl_defaults=True):
        """
        Convert the ConfigGroup to a dictionary.

        :param excl_defaults: (bool) exclude default values
        :return: (dict) dictionary representation of the ConfigGroup
        """
        values = {}
        for k, value in self._values.items():
            if isinstance(value, ConfigGroup):
                value = value.to_dict(excl_defaults=excl_defaults)
            elif isinstance(value, list):
                value = [v.to_dict(excl_defaults=excl_defaults) if isinstance(v, ConfigGroup)
                         else v for v in value]
            if value is None:
                continue
            # only keep if not default value (if set)
            if k not in self._defaults or not excl_defaults or \
                    self._defaults[k] != self._values[k]:
                values[k] = value
        return values

    def to_json(self, excl_defaults=True):
        """Convert the ConfigGroup to a JSON string."""
        return json.dumps(self.to_dict(excl_defaults=excl_defaults))

    def write(self, file_name, excl_defaults=True):
        """Write the ConfigGroup to a JSON file."""
        with open(file_name, "w") as outfile:
            json.dump(self.to_dict(excl_defaults=excl_defaults), outfile, indent='\t')

    def write_yaml(self, file_name, excl_defaults=True):
        """Write the ConfigGroup to a YAML file."""
        with open(file_name, "w") as outfile:
            yaml.dump(self.to_dict(excl_defaults=excl_defaults), outfile)


def _residue_codes(residues):
    """Turn a list of one letter amino-acid codes into an array of byte values."""
    return np.array([ord(residue) for residue in residues], dtype=np.uint8)


class Enzyme(ConfigGroup):
    """
    Enzyme configuration.

    Decides whether the boundary between two consecutive residues is a cleavage site. Only
    positions directly after a cleavage site (or the protein n-terminus) are used as tag starts.
    """

    """Name of the enzyme"""
    name = Setting(str)

    """enzyme cleaves c-terminal of these amino-acids"""
    cterminal_of = ListSetting(str, [])

    """enzyme cleaves n-terminal of these amino-acids"""
    nterminal_of = ListSetting(str, [])

    """enzyme does not cleave if the opposing amino-acid is one of these"""
    restraining = ListSetting(str, [])

    def __init__(self, **kwargs):
        """Check that the enzyme actually cleaves somewhere."""
        super().__init__(**kwargs)
        if len(self.cterminal_of) == 0 and len(self.nterminal_of) == 0:
            raise ValueError("Enzyme '%s' needs cterminal_of or nterminal_of residues"
                             % self.name)
        for residue in self.cterminal_of + self.nterminal_of + self.restraining:
            if len(residue) != 1:
                raise ValueError("Residues have to be given in one letter code not '%s'"
                                 % residue)

    @memoized_property
    def _cterminal_codes(self):
        return _residue_codes(self.cterminal_of)

    @memoized_property
    def _nterminal_codes(self):
        return _residue_codes(self.nterminal_of)

    @memoized_property
    def _restraining_codes(self):
        return _residue_codes(self.restraining)

    def is_cleavage_site(self, previous_residue, current_residue):
        """
        Test whether the enzyme cleaves between two consecutive residues.

        :param previous_residue: (str) residue before the boundary
        :param current_residue: (str) residue after the boundary
        :return: (bool) True if the boundary is a cleavage site
        """
        if previous_residue in self.cterminal_of and current_residue not in self.restraining:
            return True
        return current_residue in self.nterminal_of and previous_residue not in self.restraining

    def cleavage_mask(self, sequence):
        """
        Vectorised version of is_cleavage_site over a whole protein sequence.

        :param sequence: (str) protein sequence
        :return: (ndarray bool) entry i tells whether residue i follows a cleavage site, the
            first entry (protein n-terminus) is always True
        """
        if len(sequence) == 0:
            return np.zeros(0, dtype=bool)
        residues = np.frombuffer(sequence.encode("ascii", errors="replace"), dtype=np.uint8)
        mask = np.zeros(residues.size, dtype=bool)
        previous = residues[:-1]
        current = residues[1:]
        restrained_after = np.isin(current, self._restraining_codes)
        restrained_before = np.isin(previous, self._restraining_codes)
        cterm = np.isin(previous, self._cterminal_codes) & ~restrained_after
        nterm = np.isin(current, self._nterminal_codes) & ~restrained_before
        mask[1:] = cterm | nterm
        mask[0] = True
        return mask


Enzyme.trypsin = Enzyme(name='trypsin',
                        cterminal_of=['K', 'R'], restraining=['P'])

Enzyme.asp_n = Enzyme(name='asp-n',
                      nterminal_of=['D'])


class FastaConfig(ConfigGroup):
    """FASTA reading configuration."""

    """Regular expression used for matching protein accession in the header"""
    re_accession = Setting(str, "(?:sp|tr)\\|([\\w-]+)\\|.*")


class SequenceMatchingConfig(ConfigGroup):
    """
    How the residues of a peptide are compared to the residues of a protein.

    With 'exact' matching residues have to be identical. With 'indistinguishable' matching the
    residues of a group (e.g. I and L) stand for each other and the wildcard residue matches
    every amino acid, in the peptide as well as in the protein.
    """

    """Either 'exact' or 'indistinguishable'"""
    matching_type = Setting(str, 'exact', valid_values=['exact', 'indistinguishable'])

    """Groups of residues that can not be told apart"""
    indistinguishable = ListSetting(str, ['IL'])

    """Residue code standing for any amino acid"""
    wildcard = Setting(str, 'X')

    def __init__(self, **kwargs):
        """Check that groups and wildcard are given in one letter code."""
        super().__init__(**kwargs)
        if len(self.wildcard) != 1:
            raise ValueError("The wildcard has to be a single residue not '%s'" % self.wildcard)
        for group in self.indistinguishable:
            if not group.isalpha():
                raise ValueError("Residue groups have to be given in one letter code not '%s'"
                                 % group)

    @property
    def is_exact(self):
        return self.matching_type == 'exact'

    @memoized_property
    def _residue_groups(self):
        groups = {}
        for group in self.indistinguishable:
            for residue in group:
                groups.setdefault(residue, set()).update(group)
        return groups

    def residues_matching(self, residue):
        """
        Return the protein residues a peptide residue matches.

        :param residue: (str) residue of the peptide
        :return: (list of str) sorted protein residues
        """
        if self.is_exact:
            return [residue]
        if residue == self.wildcard:
            return sorted(set(const.AMINO_ACIDS) | {self.wildcard})
        result = set(self._residue_groups.get(residue, ()))
        result.add(residue)
        result.add(self.wildcard)
        return sorted(result)

    def matches(self, peptide_residue, protein_residue):
        """Test whether a protein residue matches a peptide residue."""
        if peptide_residue == protein_residue:
            return True
        if self.is_exact:
            return False
        return protein_residue in self.residues_matching(peptide_residue)


SequenceMatchingConfig.exact = SequenceMatchingConfig()

SequenceMatchingConfig.indistinguishable_amino_acids = SequenceMatchingConfig(
    matching_type='indistinguishable')


class TreeConfig(ConfigGroup):
    """Configuration for building and querying a protein tree."""

    """Length of the tags used as first level keys"""
    initial_tag_size = Setting(int, 3, min_value=1)

    """Leaves with more distinct accessions than this are split"""
    max_node_size = Setting(int, 500, min_value=1)

    """Depth after which leaves are not split anymore"""
    max_peptide_size = Setting(int, 10, min_value=1)

    """Number of threads loading accessions"""
    loader_threads = Setting(int, 2, min_value=1)

    """Number of threads splitting and saving tags"""
    saver_threads = Setting(int, 2, min_value=1)

    """Number of saved tags collected before they are removed from the live map"""
    removal_batch_size = Setting(int, 1000, min_value=1)

    """Number of passes over the accessions, each pass indexes a share of the tags"""
    n_passes = Setting(int, 1, min_value=1)

    """How often the retrieval of a sequence is attempted before the accession is dropped"""
    max_retries = Setting(int, 2, min_value=1)

    """Drop the content of saved leaves from memory"""
    evict = Setting(bool, True)

    """Number of peptide queries kept in the query cache (0 disables the cache)"""
    query_cache_size = Setting(int, 1000, min_value=0)

    """Folder for the index file - a temporary folder is used if not given"""
    index_folder = Setting(str, required=False)

    """Enzyme restricting tag starts to cleavage sites - every position if not given"""
    enzyme = Setting(Enzyme, required=False)

    """How to read accessions from FASTA headers"""
    fasta = Setting(FastaConfig, FastaConfig())

    """Default residue comparison of peptide queries"""
    sequence_matching = Setting(SequenceMatchingConfig, SequenceMatchingConfig())

    def __init__(self, **kwargs):
        """Initialise the TreeConfig and check that the sizes fit together."""
        super().__init__(**kwargs)
        self.validate()

    def validate(self):
        """Check settings that depend on each other."""
        if self.max_peptide_size < self.initial_tag_size:
            raise ValueError("max_peptide_size (%d) should not be smaller than "
                             "initial_tag_size (%d)!" % (self.max_peptide_size,
                                                         self.initial_tag_size))

    def updated(self, **kwargs):
        """
        Return a copy of the config with some settings replaced.

        Settings given as None are ignored.
        """
        new_config = copy.deepcopy(self)
        for key, value in kwargs.items():
            if value is None:
                continue
            if key not in self._settings:
                raise KeyError("Unknown setting '%s'" % key)
            setattr(new_config, key, value)
        new_config.validate()
        return new_config


class ConfigReader:
    """Config Reader class."""

    @classmethod
    def load_file(cls, file_name):
        """Open a file by filename and create a TreeConfig from it."""
        with open(file_name) as f:
            if file_name.lower().endswith('.json'):
                return cls.load_json(f)
            elif file_name.lower().endswith('.yaml') or file_name.lower().endswith('.yml'):
                return cls.load_yaml(f)
            else:
                # Guess format
                content = f.read()
                try:
                    return cls.loads_json(content)
                except json.JSONDecodeError:
                    return cls.loads_yaml(content)

    @classmethod
    def load_json(cls, file_obj):
        """Create a TreeConfig from a JSON file."""
        return TreeConfig(**json.load(file_obj))

    @classmethod
    def load_yaml(cls, file_obj):
        """Create a TreeConfig from a YAML file."""
        return TreeConfig(**yaml.safe_load(file_obj))

    @classmethod
    def loads_json(cls, s):
        """Create a TreeConfig from a JSON string."""
        return TreeConfig(**json.loads(s))

    @classmethod
    def loads_yaml(cls, s):
        """Create a TreeConfig from a YAML string."""
        return TreeConfig(**yaml.safe_load(s))
