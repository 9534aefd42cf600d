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
Storage of leaf contents in an append-only index file.

Every saved leaf becomes one line of the file:

    accession<TAB>position<TAB>position<TAB>...accession2<TAB>position<TAB>...<TAB><NEWLINE>

Tokens that parse as integer are positions, any other token starts a new accession. A leaf
remembers the byte offset of its line so it can be read back after its content was dropped
from memory. The file only lives as long as the tree built with it.
"""
import os
import shutil
import tempfile
import threading
from proteintree import const
from proteintree.sequences import validate_accession
from proteintree.tree_logging import log


class NodeNotFoundError(LookupError):
    """Raised when no record can be read at the offset stored in a node."""


def serialize_accessions(accessions):
    """
    Turn the content of a leaf into one record.

    :param accessions: (dict) accession -> list of positions
    :return: (bytes) the utf-8 encoded record including the line terminator
    """
    tokens = []
    for accession, positions in accessions.items():
        validate_accession(accession)
        tokens.append(accession)
        tokens.extend(str(int(p)) for p in positions)
    record = "".join(token + const.SEPARATOR for token in tokens) + const.LINE_TERMINATOR
    return record.encode("utf-8")


def parse_accessions(line):
    """
    Read the content of a leaf back from a record.

    :param line: (bytes|str) a record as written by serialize_accessions
    :return: (dict) accession -> list of positions
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    result = {}
    positions = None
    for token in line.rstrip("\r\n").split(const.SEPARATOR):
        if not token:
            continue
        try:
            position = int(token)
        except ValueError:
            positions = result.setdefault(token, [])
            continue
        if positions is None:
            raise ValueError("Position %s found before any accession" % token)
        positions.append(position)
    return result


def index_filename(directory, name, version, hash_value):
    """
    Return the path of an index file.

    :param directory: (str) folder of the file
    :param name: (str) name of the sequence database
    :param version: (int) version of the record layout
    :param hash_value: (int) hash over the parameters the tree is built with
    """
    return os.path.join(directory, "%s-%08x-v%d%s" % (name, hash_value % 0xFFFFFFFF, version,
                                                     const.INDEX_EXTENSION))


class ProteinTreeComponents:
    """
    Owner of the index file of one tree.

    Leaves are written with save_accessions and read back with read_accessions. The file
    position is shared, so each seek+read and seek+write happens under one lock. Besides the
    leaves it keeps the lengths of all proteins that were loaded.
    """

    def __init__(self, directory=None, name="proteintree", hash_value=0):
        """
        Initialise the ProteinTreeComponents.

        :param directory: (str) folder for the index file, a temporary folder is created (and
            removed on close) if None
        :param name: (str) name of the sequence database the tree is built for
        :param hash_value: (int) hash over the build parameters
        """
        self._temporary_directory = directory is None
        self.directory = directory
        self.name = name
        self.hash_value = hash_value
        self.path = None
        self._file = None
        self._file_lock = threading.Lock()
        self._lengths = {}
        self._lengths_lock = threading.Lock()

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def is_open(self):
        return self._file is not None

    def initialize(self):
        """Create the index file, replacing any stale file of the same name."""
        if self._file is not None:
            raise RuntimeError("Index file %s is already open" % self.path)
        if self._temporary_directory:
            self.directory = tempfile.mkdtemp(prefix="proteintree-")
        else:
            os.makedirs(self.directory, exist_ok=True)
        self.path = index_filename(self.directory, self.name, const.FORMAT_VERSION,
                                   self.hash_value)
        if os.path.exists(self.path):
            log("Replacing stale index file %s" % self.path)
        self._file = open(self.path, "w+b")
        return self

    def _check_open(self):
        if self._file is None:
            raise RuntimeError("Index file is not open")

    def save_accessions(self, node, evict=True):
        """
        Append the content of all leaves below a node to the index file.

        Every written leaf gets the offset of its record as store index. Leaves whose content
        has already been evicted keep their record.

        :param node: (Node) node to save
        :param evict: (bool) drop the saved content from memory
        :return: (int) number of records written
        """
        if node.subtree is not None:
            return sum(self.save_accessions(child, evict) for child in node.subtree.values())
        if node.is_evicted():
            return 0

        record = serialize_accessions(node.accessions)
        self._check_open()
        with self._file_lock:
            self._file.seek(0, os.SEEK_END)
            offset = self._file.tell()
            self._file.write(record)
            self._file.flush()
        node.set_index(offset)
        if evict:
            node.clear_accessions()
        return 1

    def _read_line(self, offset):
        with self._file_lock:
            self._file.seek(offset)
            line = self._file.readline()
            if not line:
                # reposition at the end of the file before trying again
                self._file.seek(0, os.SEEK_END)
                self._file.seek(offset)
                line = self._file.readline()
        return line

    def read_accessions(self, offset):
        """
        Read the content of a leaf.

        :param offset: (int) store index of the leaf
        :return: (dict) accession -> list of positions
        :raises NodeNotFoundError: if there is no record at the offset
        """
        self._check_open()
        line = self._read_line(offset)
        if not line:
            raise NodeNotFoundError("Node not found at offset %d of %s" % (offset, self.path))
        return parse_accessions(line)

    def save_protein_length(self, accession, length):
        """
        Log the length of a loaded protein.

        :return: (bool) True if the length was written, False if it was already known
        """
        with self._lengths_lock:
            if accession in self._lengths:
                return False
            self._lengths[accession] = length
            return True

    def is_loaded(self, accession):
        return accession in self._lengths

    def get_protein_length(self, accession):
        """Return the logged length of a protein or None."""
        return self._lengths.get(accession)

    @property
    def n_loaded(self):
        return len(self._lengths)

    def close(self):
        """Close and delete the index file."""
        if self._file is not None:
            with self._file_lock:
                self._file.close()
                self._file = None
        if self.path is not None and os.path.exists(self.path):
            os.remove(self.path)
        if self._temporary_directory and self.directory is not None:
            shutil.rmtree(self.directory, ignore_errors=True)
            self.directory = None
