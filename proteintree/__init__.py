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
proteintree: disk-backed index of protein sequences keyed by short amino-acid tags.

The package contains:
- Configuration (config, const)
- Output and progress (tree_logging, waiting)
- Sequence sources and tag extraction (sequences, tags)
- The tree itself (node, components, builder, tree)

Typical use::

    from proteintree import build_index
    from proteintree.sequences import FastaSequenceProvider

    provider = FastaSequenceProvider("proteins.fasta")
    with build_index(None, provider, initial_tag_size=3) as tree:
        tree.get_protein_mapping("PEPTIDE")
"""

__version__ = "1.0.0"

from . import const
from . import config
from . import tree_logging
from . import waiting
from . import sequences
from . import tags
from . import node
from . import components
from . import tree
from . import builder

from .builder import build_index
from .tree import ProteinTree

__all__ = [
    "const",
    "config",
    "tree_logging",
    "waiting",
    "sequences",
    "tags",
    "node",
    "components",
    "tree",
    "builder",
    "build_index",
    "ProteinTree",
]
