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

"""Sources of protein sequences that a tree can be built over."""
import os
import re
from pyteomics import fasta
from proteintree import const
from proteintree.config import FastaConfig
from proteintree.tree_logging import log


class ProteinNotFoundError(KeyError):
    """Raised when a sequence provider does not know an accession."""


def validate_accession(accession):
    """
    Check that an accession can be written into a node record.

    Records separate tokens with tabs and any token that parses as integer is read back as a
    position, so accessions must contain neither separator nor line breaks and must not be a
    plain number.

    :param accession: (str) protein accession
    :raises ValueError: if the accession can not be stored
    """
    if not isinstance(accession, str) or len(accession) == 0:
        raise ValueError("Accession %r is not a non-empty string" % (accession,))
    if const.SEPARATOR in accession or const.LINE_TERMINATOR in accession or \
            "\r" in accession:
        raise ValueError("Accession %r contains a reserved separator" % accession)
    try:
        int(accession)
    except ValueError:
        return
    raise ValueError("Accession %r would be read back as a position" % accession)


class SequenceProvider:
    """Base class of everything that maps accessions to protein sequences."""

    name = "sequences"

    def get_sequence(self, accession):
        """
        Return the sequence of a protein.

        :param accession: (str) protein accession
        :raises ProteinNotFoundError: if the accession is unknown
        """
        raise NotImplementedError

    def accessions(self):
        """Return all accessions known to the provider."""
        raise NotImplementedError


class DictSequenceProvider(SequenceProvider):
    """Sequences held in memory."""

    def __init__(self, sequences, name="sequences"):
        """
        Initialise the DictSequenceProvider.

        :param sequences: (dict) accession -> sequence
        :param name: (str) name of the sequence database
        """
        self.sequences = dict(sequences)
        self.name = name

    def get_sequence(self, accession):
        try:
            return self.sequences[accession]
        except KeyError:
            raise ProteinNotFoundError(accession) from None

    def accessions(self):
        return list(self.sequences.keys())


class FastaSequenceProvider(DictSequenceProvider):
    """Sequences read from a FASTA file."""

    def __init__(self, path, config=None):
        """
        Read all proteins of a FASTA file.

        :param path: (str) path to the FASTA file
        :param config: (FastaConfig) how to get accessions from the headers
        """
        if config is None:
            config = FastaConfig()
        self.path = path
        self.re_accession = re.compile(config.re_accession)
        name = os.path.splitext(os.path.basename(path))[0]
        super().__init__(self._read(path), name=name)

    def accession_from_header(self, description):
        """
        Extract the accession from a FASTA header.

        Falls back to the first word of the header if the regular expression does not match.
        """
        match = self.re_accession.match(description)
        if match is not None:
            return match.group(1)
        return description.split()[0] if description.strip() else description

    def _read(self, path):
        sequences = {}
        with fasta.read(path) as reader:
            for description, sequence in reader:
                accession = self.accession_from_header(description)
                if accession in sequences:
                    log("Duplicate accession %s in %s - keeping the first sequence"
                        % (accession, path))
                    continue
                sequences[accession] = sequence.strip().upper()
        log("Read %d proteins from %s" % (len(sequences), path))
        return sequences
