# csilvm/provisioner/_dispatch.py - Privileged execution dispatcher
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Run volume actions on a specific node by way of a one-shot privileged
provisioner pod.

The pod is created with restart policy "Never": the cluster never retries
it, and its outcome is observed only by polling it from here.
"""
import logging

from csilvm import (
    CsiLvmArgumentError,
    CsiLvmClusterError,
    CsiLvmExecutionFailedError,
    CsiLvmExistsError,
    CsiLvmNotFoundError,
    CsiLvmTimeoutError,
)

from ._action import VolumeAction
from ._pod import (
    PodClient,
    build_provisioner_pod,
    _log_debug_provisioner,
    POD_FAILED,
    POD_SUCCEEDED,
)
from ._retry import RetryPolicy

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class Dispatcher:
    """
    Submit provisioner pods and wait for them to finish.
    """

    def __init__(self, pod_client: PodClient, clock=None):
        """
        :param pod_client: The cluster API used to manage provisioner pods.
        :param clock: Clock for the polling loop; defaults to wall time.
        """
        self.pod_client = pod_client
        self.clock = clock

    def _teardown(self, pod_name):
        try:
            self.pod_client.delete(pod_name)
        except (CsiLvmNotFoundError, CsiLvmClusterError) as err:
            _log_error("unable to delete the provisioner pod %s: %s", pod_name, err)

    def _poll(self, pod_name, policy):
        """
        Poll ``pod_name`` until it terminates or ``policy`` is exhausted.

        :returns: ``None`` on success, ``False`` if the pod disappeared, or
                  the exception describing the failure.
        """
        for attempt in policy:
            try:
                phase = self.pod_client.phase(pod_name)
            except CsiLvmNotFoundError:
                _log_info("provisioner pod %s is already gone", pod_name)
                return False
            except CsiLvmClusterError as err:
                _log_error("error reading provisioner pod %s: %s", pod_name, err)
                continue

            if phase == POD_FAILED:
                _log_info("provisioner pod %s terminated with failure", pod_name)
                return CsiLvmExecutionFailedError(
                    f"provisioner pod {pod_name} terminated with failure"
                )
            if phase == POD_SUCCEEDED:
                _log_info("provisioner pod %s terminated successfully", pod_name)
                return None
            _log_debug_provisioner(
                "provisioner pod %s status:%s (attempt %d/%d)",
                pod_name,
                phase,
                attempt + 1,
                policy.max_attempts,
            )
        return CsiLvmTimeoutError(
            f"create process {pod_name} timeout after {policy.max_attempts} seconds"
        )

    def dispatch(self, va: VolumeAction, retry_seconds: int):
        """
        Run ``va`` in a provisioner pod on ``va.node_name`` and poll the pod
        once per second for up to ``retry_seconds`` seconds.

        The pod is always deleted afterwards, even if polling raises;
        deletion errors are logged only. If the pod has already disappeared
        while polling, it was reaped elsewhere and the action counts as
        successful.

        :param va: The action to run.
        :param retry_seconds: The polling budget in seconds.
        :raises: ``CsiLvmArgumentError`` if ``va`` or ``retry_seconds`` is
                 invalid,
                 ``CsiLvmClusterError`` if the pod cannot be created,
                 ``CsiLvmExecutionFailedError`` if the pod failed,
                 ``CsiLvmTimeoutError`` if the budget is exhausted.
        """
        va.validate()
        if retry_seconds < 0:
            raise CsiLvmArgumentError(
                f"retry seconds must not be negative: {retry_seconds}"
            )
        policy = RetryPolicy.from_seconds(retry_seconds, clock=self.clock)
        pod = build_provisioner_pod(va)
        pod_name = pod.metadata.name

        _log_info("start provisionerPod with args:%s", pod.spec.containers[0].args)
        try:
            self.pod_client.create(pod)
        except CsiLvmExistsError:
            # Left over from an earlier attempt: poll it like a new one.
            _log_info("provisioner pod %s already exists", pod_name)

        outcome = None
        try:
            outcome = self._poll(pod_name, policy)
        finally:
            if outcome is not False:
                self._teardown(pod_name)

        if isinstance(outcome, Exception):
            raise outcome

        _log_info("%s for volume %s on %s was successful", va.action, va.name, va.node_name)


def dispatch_privileged_action(va, retry_seconds, pod_client, clock=None):
    """
    Run ``va`` on its target node using a new ``Dispatcher`` for
    ``pod_client``. See ``Dispatcher.dispatch()``.
    """
    Dispatcher(pod_client, clock=clock).dispatch(va, retry_seconds)
