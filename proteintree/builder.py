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
Concurrent construction of a protein tree.

The build runs in passes. In every pass a pool of AccessionLoader threads drains the queue of
accessions, extracting the tags of each protein and adding the positions to a shared live map
of tag -> Node. Once all loaders have finished, a pool of TagSaver threads drains the queue of
tags found in that pass: each node is split, written to the index file and moved from the
live map into the finished tree. A node is therefore never touched by a loader and a saver at
the same time; loaders working on the same node are serialised by the lock of the map stripe
holding it.
"""
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from time import time
from proteintree.components import ProteinTreeComponents
from proteintree.config import TreeConfig, Enzyme
from proteintree.node import Node
from proteintree.sequences import validate_accession
from proteintree.tags import get_tag_to_indexes_map, tag_pass
from proteintree.tree import ProteinTree
from proteintree.tree_logging import log


class ConcurrentNodeMap:
    """
    Lock-striped map of tag -> Node.

    Each tag lives in one of n_stripes dictionaries, each with its own lock, so loaders adding
    to different tags rarely wait for each other.
    """

    def __init__(self, n_stripes=64):
        self._stripes = [({}, threading.Lock()) for _ in range(n_stripes)]

    def _stripe(self, tag):
        return self._stripes[hash(tag) % len(self._stripes)]

    def add_positions(self, tag, accession, positions, depth):
        """
        Add positions of an accession to the node of a tag, creating the node if needed.

        :param tag: (str) the tag
        :param accession: (str) protein accession
        :param positions: (list of int) positions of the tag in the protein
        :param depth: (int) depth of newly created nodes
        """
        nodes, lock = self._stripe(tag)
        with lock:
            node = nodes.get(tag)
            if node is None:
                node = Node(depth)
                nodes[tag] = node
            node.add_accession(accession, positions)

    def get(self, tag):
        nodes, _ = self._stripe(tag)
        return nodes.get(tag)

    def remove_all(self, tags):
        """Remove a batch of tags."""
        for tag in tags:
            nodes, lock = self._stripe(tag)
            with lock:
                nodes.pop(tag, None)

    def keys(self):
        result = []
        for nodes, lock in self._stripes:
            with lock:
                result.extend(nodes.keys())
        return result

    def items(self):
        result = []
        for nodes, lock in self._stripes:
            with lock:
                result.extend(nodes.items())
        return result

    def __contains__(self, tag):
        nodes, _ = self._stripe(tag)
        return tag in nodes

    def __len__(self):
        return sum(len(nodes) for nodes, _ in self._stripes)


class BuildReport:
    """
    Counters of a finished (or cancelled) build.

    Every accession ends up either loaded or failed. An accession that failed in one pass is
    not attempted again in later passes.
    """

    def __init__(self):
        self.loaded = 0
        self.failed_accessions = []
        self.saved_tags = 0
        self.failed_tags = []
        self.cancelled = False
        self._failed = set()
        self._lock = threading.Lock()

    def __repr__(self):
        return ("BuildReport(loaded=%d, failed_accessions=%d, saved_tags=%d, failed_tags=%d, "
                "cancelled=%s)" % (self.loaded, len(self.failed_accessions), self.saved_tags,
                                   len(self.failed_tags), self.cancelled))

    def accession_failed(self, accession):
        with self._lock:
            if accession not in self._failed:
                self._failed.add(accession)
                self.failed_accessions.append(accession)

    def is_failed(self, accession):
        with self._lock:
            return accession in self._failed

    def tag_saved(self):
        with self._lock:
            self.saved_tags += 1

    def tag_failed(self, tag):
        with self._lock:
            self.failed_tags.append(tag)


class AccessionLoader:
    """Worker draining the accession queue into the live map."""

    def __init__(self, builder):
        self.builder = builder

    def run(self):
        """Process accessions until the queue is empty or the build is cancelled."""
        builder = self.builder
        while True:
            try:
                accession, attempt = builder.accession_queue.get_nowait()
            except queue.Empty:
                return
            try:
                self.load(accession)
                builder.increase_progress()
            except Exception as e:
                builder.accession_failed(accession, attempt, e)
            if builder.is_cancelled():
                return

    def load(self, accession):
        """Add all tags of one protein to the live map."""
        builder = self.builder
        config = builder.config
        sequence = builder.sequence_provider.get_sequence(accession)

        tag_filter = None
        if config.n_passes > 1:
            current_pass = builder.current_pass
            n_passes = config.n_passes

            def tag_filter(tag):
                return tag_pass(tag, n_passes) == current_pass

        tag_map = get_tag_to_indexes_map(sequence, config.initial_tag_size, builder.enzyme,
                                         tag_filter)
        for tag, positions in tag_map.items():
            builder.live_nodes.add_positions(tag, accession, positions, config.initial_tag_size)

        builder.components.save_protein_length(accession, len(sequence))


class TagSaver:
    """Worker draining the tag queue: splits, saves and retires nodes."""

    def __init__(self, builder):
        self.builder = builder

    def run(self):
        """Process tags until the queue is empty or the build is cancelled."""
        builder = self.builder
        while True:
            try:
                tag = builder.tag_queue.get_nowait()
            except queue.Empty:
                return
            try:
                builder.save_tag(tag)
            except Exception as e:
                # the node stays in the live map and remains queryable from memory
                log("Saving tag %s failed: %s" % (tag, e))
                builder.report.tag_failed(tag)
            builder.increase_progress()
            if builder.is_cancelled():
                return


class TreeBuilder:
    """Drives loaders and savers over all passes of a build."""

    def __init__(self, sequence_provider, config=None, enzyme=None, waiting_handler=None):
        """
        Initialise the TreeBuilder.

        :param sequence_provider: provider of the protein sequences
        :param config: (TreeConfig) build parameters
        :param enzyme: enzyme restricting tag starts, defaults to the enzyme of the config
        :param waiting_handler: (WaitingHandler) optional cancellation/progress observer
        """
        if config is None:
            config = TreeConfig()
        if enzyme is None:
            enzyme = config.get('enzyme')
        self.config = config
        self.sequence_provider = sequence_provider
        self.enzyme = enzyme
        self.waiting_handler = waiting_handler
        self.components = ProteinTreeComponents(config.get('index_folder'),
                                                name=getattr(sequence_provider, 'name',
                                                             'proteintree'),
                                                hash_value=config.hash())
        self.live_nodes = ConcurrentNodeMap()
        self.saved_nodes = {}
        self._saved_lock = threading.Lock()
        self._removal_batch = []
        self._removal_lock = threading.Lock()
        self.accession_queue = queue.Queue()
        self.tag_queue = queue.Queue()
        self.current_pass = 0
        self.report = BuildReport()

    def is_cancelled(self):
        return self.waiting_handler is not None and self.waiting_handler.is_cancelled()

    def increase_progress(self, amount=1):
        if self.waiting_handler is not None:
            self.waiting_handler.increase_progress(amount)

    def accession_failed(self, accession, attempt, error):
        """Requeue an accession whose sequence could not be processed, or give up on it."""
        if attempt < self.config.max_retries:
            log("Loading %s failed (%s), requeued for attempt %d"
                % (accession, error, attempt + 1))
            self.accession_queue.put((accession, attempt + 1))
        else:
            log("Loading %s failed after %d attempts (%s), accession skipped"
                % (accession, attempt, error))
            self.report.accession_failed(accession)
            self.increase_progress()

    def save_tag(self, tag):
        """Split and save the node of one tag and move it to the finished tree."""
        node = self.live_nodes.get(tag)
        if node is None:
            return
        node.split_node(self.config.max_node_size, self.config.max_peptide_size,
                        self.sequence_provider)
        self.components.save_accessions(node, evict=self.config.evict)
        with self._saved_lock:
            self.saved_nodes[tag] = node
        self.report.tag_saved()
        with self._removal_lock:
            self._removal_batch.append(tag)
            if len(self._removal_batch) >= self.config.removal_batch_size:
                self.live_nodes.remove_all(self._removal_batch)
                self._removal_batch = []

    def _flush_removals(self):
        with self._removal_lock:
            self.live_nodes.remove_all(self._removal_batch)
            self._removal_batch = []

    def _run_workers(self, worker_class, n_threads):
        """Run n_threads workers of a class and wait for all of them."""
        with ThreadPoolExecutor(max_workers=n_threads,
                                thread_name_prefix=worker_class.__name__) as executor:
            futures = [executor.submit(worker_class(self).run) for _ in range(n_threads)]
            for future in as_completed(futures):
                try:
                    future.result()
                except Exception as e:
                    log("%s stopped with an error: %s" % (worker_class.__name__, e))

    def _load(self, accessions):
        if self.waiting_handler is not None:
            self.waiting_handler.set_max_progress(len(accessions))
        for accession in accessions:
            self.accession_queue.put((accession, 1))
        self._run_workers(AccessionLoader, self.config.loader_threads)

    def _save(self):
        tags = [tag for tag in self.live_nodes.keys()
                if tag_pass(tag, self.config.n_passes) == self.current_pass]
        if self.waiting_handler is not None:
            self.waiting_handler.set_max_progress(len(tags))
        for tag in tags:
            self.tag_queue.put(tag)
        self._run_workers(TagSaver, self.config.saver_threads)
        self._flush_removals()
        return len(tags)

    def build(self, accessions):
        """
        Build the tree over a set of accessions.

        Accessions that fail for good are skipped in the following passes. The content they
        contributed in earlier passes stays in the tree, they are reported as failed only.

        :param accessions: (iterable of str) accessions to index, duplicates are indexed once
        :return: (ProteinTree) the tree, also if the build was cancelled
        """
        accessions = list(dict.fromkeys(accessions))
        for accession in accessions:
            validate_accession(accession)

        self.components.initialize()
        try:
            n_passes = self.config.n_passes
            start = time()
            for current_pass in range(n_passes):
                if self.is_cancelled():
                    break
                self.current_pass = current_pass
                pending = [a for a in accessions if not self.report.is_failed(a)]
                log("Pass %d/%d: loading %d accessions" % (current_pass + 1, n_passes,
                                                            len(pending)))
                self._load(pending)
                if self.is_cancelled():
                    break
                n_tags = self._save()
                log("Pass %d/%d: saved %d tags" % (current_pass + 1, n_passes, n_tags))
        except BaseException:
            self.components.close()
            raise

        self.report.loaded = sum(1 for a in accessions if self.components.is_loaded(a) and
                                 not self.report.is_failed(a))
        self.report.cancelled = self.is_cancelled()
        if self.report.cancelled:
            log("Tree building cancelled")
        log("Tree built in %.1f s: %r" % (time() - start, self.report))

        # nodes not saved (failed or cancelled) are kept in memory
        nodes = dict(self.saved_nodes)
        nodes.update(self.live_nodes.items())
        return ProteinTree(nodes, self.components, self.sequence_provider, self.config,
                           report=self.report)


def build_index(accessions, sequence_provider, enzyme=None, initial_tag_size=None,
                max_node_size=None, max_peptide_size=None, n_loader_threads=None,
                n_saver_threads=None, waiting_handler=None, config=None):
    """
    Build a protein tree.

    Parameters given explicitly replace the corresponding settings of the config.

    :param accessions: (iterable of str) accessions to index, None for all accessions of the
        sequence provider
    :param sequence_provider: provider of the protein sequences
    :param enzyme: enzyme restricting tag starts, None for the config's enzyme (or every
        position if the config has none)
    :param initial_tag_size: (int) length of the first level tags
    :param max_node_size: (int) maximal number of accessions per leaf
    :param max_peptide_size: (int) depth after which leaves are not split anymore
    :param n_loader_threads: (int) number of AccessionLoader threads
    :param n_saver_threads: (int) number of TagSaver threads
    :param waiting_handler: (WaitingHandler) optional cancellation/progress observer
    :param config: (TreeConfig) base configuration
    :return: (ProteinTree) the built tree
    """
    if config is None:
        config = TreeConfig()
    config = config.updated(initial_tag_size=initial_tag_size, max_node_size=max_node_size,
                            max_peptide_size=max_peptide_size, loader_threads=n_loader_threads,
                            saver_threads=n_saver_threads)
    if isinstance(enzyme, Enzyme):
        config.enzyme = enzyme
    if accessions is None:
        accessions = sequence_provider.accessions()
    builder = TreeBuilder(sequence_provider, config, enzyme=enzyme,
                          waiting_handler=waiting_handler)
    return builder.build(accessions)
