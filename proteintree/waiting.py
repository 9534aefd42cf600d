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
Observers of a running build.

A waiting handler is polled by every worker after each unit of work. It can cancel the build
and it is told about progress, but it never changes what ends up in the tree.
"""
import threading
from proteintree.tree_logging import ProgressBar


class WaitingHandler:
    """Cancellation flag plus a progress counter."""

    def __init__(self):
        """Initialise the WaitingHandler in a not cancelled state."""
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self.progress = 0
        self.max_progress = 0

    def is_cancelled(self):
        """Return True once the build should stop."""
        return self._cancelled.is_set()

    def cancel(self):
        """Request cancellation of the build."""
        self._cancelled.set()

    def set_max_progress(self, total):
        """Announce the number of units of work of the next phase."""
        with self._lock:
            self.max_progress += total

    def increase_progress(self, amount=1):
        """Count finished units of work."""
        with self._lock:
            self.progress += amount


class ProgressWaitingHandler(WaitingHandler):
    """WaitingHandler that shows the progress as a ProgressBar."""

    def __init__(self, message="building protein tree"):
        """
        Initialise the ProgressWaitingHandler.

        :param message: (str) message shown in front of the bar
        """
        super().__init__()
        self.message = message
        self.bar = None

    def set_max_progress(self, total):
        """Close the bar of the previous phase and start one for the next phase."""
        super().set_max_progress(total)
        if self.bar is not None:
            self.bar.finish()
        self.bar = ProgressBar(self.message, total)

    def increase_progress(self, amount=1):
        """Count finished units of work and move the bar."""
        super().increase_progress(amount)
        if self.bar is not None:
            self.bar.next(amount)

    def finish(self):
        """Close the current bar."""
        if self.bar is not None:
            self.bar.finish()
            self.bar = None
