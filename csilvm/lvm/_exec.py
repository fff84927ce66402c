# csilvm/lvm/_exec.py - External command execution
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Command execution for LVM and file system tools.
"""
from subprocess import run, PIPE, STDOUT, TimeoutExpired
from typing import List, NamedTuple, Optional
from os import environ
import logging
import os

from csilvm import CSILVM_SUBSYSTEM_COMMAND, CsiLvmCalloutError

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": CSILVM_SUBSYSTEM_COMMAND}, **kwargs)


#: Default timeout for external programs in seconds (0 disables the timeout)
DEFAULT_COMMAND_TIMEOUT = int(os.getenv("CSILVM_COMMAND_TIMEOUT", "0"))

# LVM2 environment variables to filter out
_LVM_ENV_FILTER = [
    "LVM_OUT_FD",
    "LVM_ERR_FD",
    "LVM_REPORT_FD",
    "LVM_COMMAND_PROFILE",
    "LVM_RUN_BY_DMEVENTD",
    "LVM_SUPPRESS_FD_WARNINGS",
    "LVM_SUPPRESS_SYSLOG",
    "LVM_VG_NAME",
    "LVM_EXPECTED_EXIT_STATUS",
    "DM_ABORT_ON_INTERNAL_ERRORS",
    "DM_DISABLE_UDEV",
]


class CommandResult(NamedTuple):
    """
    The outcome of running an external program.
    """

    #: The argument list that was executed.
    args: List[str]
    #: The exit status of the program.
    status: int
    #: Combined standard output and standard error.
    output: str

    @property
    def ok(self):
        """``True`` if the program exited with status zero."""
        return self.status == 0


def _sanitize_environment():
    env = environ.copy()
    for var in _LVM_ENV_FILTER:
        if var in env:
            env.pop(var)
    # Tool output is matched against English strings.
    env["LC_ALL"] = "C"
    return env


class CommandExecutor:
    """
    Run external programs and capture their combined output.

    Managers depend only on the ``run()`` and ``check()`` methods, so any
    object providing them may be substituted.
    """

    def __init__(self, timeout: Optional[int] = None):
        """
        Initialise a new ``CommandExecutor``.

        :param timeout: Timeout in seconds for each program invocation, or
                        ``None`` to use ``DEFAULT_COMMAND_TIMEOUT``. A value
                        of zero disables the timeout.
        """
        if timeout is None:
            timeout = DEFAULT_COMMAND_TIMEOUT
        self.timeout = timeout or None
        self._env = _sanitize_environment()

    def run(self, args: List[str]) -> CommandResult:
        """
        Run the program described by ``args`` and return a ``CommandResult``.

        A non-zero exit status is not an error at this level.

        :param args: The program and its arguments.
        :returns: The exit status and combined output of the program.
        :raises: ``CsiLvmCalloutError`` if the program could not be started or
                 timed out.
        """
        args = [str(arg) for arg in args]
        _log_debug_command("Calling %s", " ".join(args))
        try:
            proc = run(
                args,
                stdout=PIPE,
                stderr=STDOUT,
                encoding="utf8",
                errors="replace",
                env=self._env,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as err:
            raise CsiLvmCalloutError(
                f"{args[0]} not found: {err}", cmd=args
            ) from err
        except TimeoutExpired as err:
            raise CsiLvmCalloutError(
                f"Timed out calling {args[0]} after {self.timeout}s", cmd=args
            ) from err
        _log_debug_command("%s exited with status %d", args[0], proc.returncode)
        return CommandResult(args, proc.returncode, proc.stdout or "")

    def check(self, args: List[str]) -> str:
        """
        Run the program described by ``args`` and return its output.

        :param args: The program and its arguments.
        :returns: The combined output of the program.
        :raises: ``CsiLvmCalloutError`` carrying the exit status and the raw
                 output if the program exits with a non-zero status.
        """
        result = self.run(args)
        if not result.ok:
            raise CsiLvmCalloutError(
                f"Error calling {result.args[0]} (status={result.status}): "
                f"{result.output.strip()}",
                cmd=result.args,
                status=result.status,
                output=result.output,
            )
        return result.output
