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

"""Module providing constants of the protein tree index."""
import sys


class _const:
    # proteintree version
    VERSION = "1.0.0"

    # version of the on-disk record layout - part of the index file name
    FORMAT_VERSION = 1

    # separates accessions and positions within a stored node record
    SEPARATOR = "\t"
    # terminates a stored node record
    LINE_TERMINATOR = "\n"

    # subtree key for occurrences where the protein ends before the next residue
    TERMINUS = "$"

    # extension of the index files
    INDEX_EXTENSION = ".tree"

    # one letter codes of the amino acids a wildcard residue can stand for
    AMINO_ACIDS = "ACDEFGHIKLMNOPQRSTUVWY"

    # as const is overwriten by _const the module __file__ variable would disapear.
    # so it is also saved into the class _const
    __file__ = __file__

    class ConstError(TypeError):
        pass

    # overwrite the __setattr__ method to raise an error if a variable is overwritten
    def __setattr__(self, name, value):
        if name in self.__dict__ or name in self.__class__.__dict__:
            raise self.ConstError("Can't rebind const(%s)" % name)
        self.__dict__[name] = value


# overwrite the module const with the class _const so that we can actually protect attributes
# from being changed
sys.modules[__name__] = _const()
