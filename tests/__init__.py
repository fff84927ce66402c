# tests/__init__.py - LVM volume plugin test package
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
import logging

from csilvm import CsiLvmCalloutError
from csilvm.lvm import CommandResult
from csilvm.provisioner import PodClient, POD_PENDING

log = logging.getLogger()
log.setLevel(logging.DEBUG)
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
file_handler = logging.FileHandler("test.log")
file_handler.setFormatter(formatter)
console_handler = logging.StreamHandler()
console_handler.setFormatter(formatter)
log.addHandler(file_handler)
log.addHandler(console_handler)


class FakeExecutor:
    """
    Scripted stand-in for ``CommandExecutor``.

    Rules are matched in the order they were added against the start of the
    argument list; a rule with a ``times`` count is used that many times and
    then skipped. Commands matching no rule succeed with empty output.
    """

    def __init__(self):
        self.calls = []
        self._rules = []

    def on(self, *prefix, status=0, output="", times=None):
        self._rules.append([[str(p) for p in prefix], status, output, times])
        return self

    def run(self, args):
        args = [str(arg) for arg in args]
        self.calls.append(args)
        for rule in self._rules:
            prefix, status, output, times = rule
            if args[:len(prefix)] != prefix or times == 0:
                continue
            if times is not None:
                rule[3] = times - 1
            return CommandResult(args, status, output)
        return CommandResult(args, 0, "")

    def check(self, args):
        result = self.run(args)
        if not result.ok:
            raise CsiLvmCalloutError(
                f"Error calling {args[0]} (status={result.status})",
                cmd=result.args,
                status=result.status,
                output=result.output,
            )
        return result.output

    def commands(self, name):
        """Return the recorded calls of program ``name``."""
        return [call for call in self.calls if call[0] == name]


class FakePodClient(PodClient):
    """
    In-memory ``PodClient`` returning a scripted sequence of pod phases.

    Each ``phase()`` call consumes the next entry of ``phases``; the last
    entry repeats. An entry that is an exception instance is raised instead.
    """

    def __init__(self, phases=None, create_error=None, delete_error=None):
        self.phases = list(phases or [POD_PENDING])
        self.create_error = create_error
        self.delete_error = delete_error
        self.created = []
        self.deleted = []
        self.polls = 0

    def create(self, pod):
        self.created.append(pod)
        if self.create_error is not None:
            raise self.create_error

    def phase(self, name):
        self.polls += 1
        value = self.phases.pop(0) if len(self.phases) > 1 else self.phases[0]
        if isinstance(value, Exception):
            raise value
        return value

    def delete(self, name):
        self.deleted.append(name)
        if self.delete_error is not None:
            raise self.delete_error
