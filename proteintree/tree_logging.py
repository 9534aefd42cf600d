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

"""Module that handles output (log messages and progress bars) of the tree builder."""
from time import time
from progress.bar import Bar
from multiprocessing import Queue, Process
import threading
import os
from pathlib import Path


_log_enabled = False
_log_file = False
_progress_enabled = False
_start_time = time()
# queue used to forward log entries to the file-writer
_log_queue = None
# the process that is doing the writing
_log_file_process = None
# loader and saver threads log concurrently
_print_lock = threading.Lock()


def log_timestamp_reset():
    """Reset the log time to the current time."""
    global _start_time
    _start_time = time()


def log_enable(setting):
    """Enable or disable logging."""
    global _log_enabled
    _log_enabled = bool(setting)


def _log_queue_writer(queue, file):
    """
    Append every line arriving on the queue to a file.

    Runs in its own process. A False on the queue closes the file and ends the process.
    """
    parent_folder = os.path.dirname(file)
    if parent_folder:
        Path(parent_folder).mkdir(parents=True, exist_ok=True)
    with open(file, "a") as log_out:
        while True:
            s = queue.get()
            if not s:
                break
            log_out.write(s)
            log_out.write("\n")
            log_out.flush()


def _stop_log_writer():
    """Ask the current writer process to finish and wait for it."""
    global _log_queue
    global _log_file_process
    if _log_queue is not None:
        _log_queue.put(False)
        if _log_file_process is not None:
            _log_file_process.join()
            _log_file_process = None
    _log_queue = None


def log_file(file):
    """
    Define that the log should be written out to a file.

    :param file: (str|False) if a string then it defines the output path; if False disables writing
    """
    global _log_file
    global _log_queue
    global _log_file_process

    if isinstance(file, str):
        _stop_log_writer()
        _log_file = True
        _log_queue = Queue()
        _log_file_process = Process(target=_log_queue_writer, args=(_log_queue, file),
                                    daemon=True)
        _log_file_process.start()
    elif isinstance(file, bool) and not file:
        _log_file = False
        _stop_log_writer()
    else:
        raise ValueError("log_file only accepts a file path or False as parameter")


def progress_enable(setting):
    """Enable or disable displaying progress bars."""
    global _progress_enabled
    _progress_enabled = bool(setting)


def log(message):
    """Log a message."""
    if _log_enabled or _log_file:
        timestamp = time() - _start_time
        timedmessage = "%.3f: %s" % (timestamp, message)
        if _log_enabled:
            with _print_lock:
                if message:
                    print(timedmessage)
                else:
                    print(flush=True)
        if _log_file and message:
            _log_queue.put(timedmessage)


class ProgressBar(object):
    """Bar to visualize the progression of a build."""

    class NiceEtaBar(Bar):
        len_last_eta = 0

        @property
        def nice_eta(self):
            """Transform the eta to a nicer human readable format."""
            if self.index == self.max:
                ret = str(self.elapsed_td) + " total"
            else:
                ret = str(int(self.percent * 10) / 10) + "% ~"
                eta = self.eta
                counts = " (" + str(self.index) + "/" + str(self.max) + ")"
                if eta > 172800:
                    ret += str(eta // 86400) + "days  remaining" + counts
                elif eta > 7200:
                    ret += str(eta // 3600) + "h  remaining" + counts
                elif eta > 120:
                    ret += str(eta // 60) + "m  remaining" + counts
                else:
                    ret += str(eta) + "s  remaining" + counts

            # clean up left over from last print out
            new_len = len(ret)
            if new_len < self.len_last_eta:
                ret += " " * (self.len_last_eta - new_len)

            self.len_last_eta = new_len
            return ret

    def __init__(self, message, total):
        """Initialise the ProgressBar with a message and a total number."""
        self.message = message
        self.total = total
        self.count = 0
        self.percent = 0
        self.bar = None
        self._lock = threading.Lock()
        if _progress_enabled:
            self.timestamp = time() - _start_time
            self.logtimestamp = self.timestamp
            if total > 1:
                self.bar = self.NiceEtaBar("%.3f: %s" % (self.timestamp, message), max=total,
                                           suffix='%(nice_eta)s')
            if _log_file:
                _log_queue.put("%.3f: %s" % (self.timestamp, message))
        else:
            log(message)

    def next(self, add_to_count=1):
        """Progress the bar."""
        with self._lock:
            self.count += add_to_count
            if self.bar is None:
                return
            timestamp = time() - _start_time
            percent = int(self.count / self.total * 100)
            # update when a new percent was passed - at most once per second,
            # but at least once per minute
            if ((percent > self.percent) and (timestamp - self.timestamp > 1)) \
                    or (timestamp - self.timestamp > 60):
                self.timestamp = timestamp
                self.bar.goto(min(self.count, self.total))
                if _log_file:
                    # at most every ten seconds
                    if (timestamp - self.logtimestamp > 10) and (percent > self.percent):
                        self.logtimestamp = timestamp
                        _log_queue.put("%.3f: %s %i%%" % (self.timestamp, self.message, percent))
                self.percent = percent

    def finish(self):
        """Finish the ProgressBar."""
        if self.bar is not None:
            self.bar.goto(self.total)
            self.bar.finish()
        if _log_file:
            timestamp = time() - _start_time
            _log_queue.put("%.3f: %s finished" % (timestamp, self.message))
