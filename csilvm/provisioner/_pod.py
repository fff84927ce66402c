# csilvm/provisioner/_pod.py - Provisioner pod construction and access
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Privileged provisioner pods and the cluster API used to manage them.
"""
from abc import ABC, abstractmethod
import logging

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from csilvm import (
    CSILVM_SUBSYSTEM_PROVISIONER,
    CsiLvmClusterError,
    CsiLvmExistsError,
    CsiLvmNotFoundError,
)

from ._action import VolumeAction, build_provisioner_args

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_provisioner(msg, *args, **kwargs):
    """A wrapper for provisioner subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": CSILVM_SUBSYSTEM_PROVISIONER}, **kwargs
    )


#: Provisioner executable inside the provisioner image
PROVISIONER_COMMAND = "/csi-lvmplugin-provisioner"

#: Prefix for the provisioner container name
CONTAINER_NAME_PREFIX = "csi-lvmplugin-"

TERMINATION_MESSAGE_PATH = "/termination.log"

# Pod phases
POD_PENDING = "Pending"
POD_RUNNING = "Running"
POD_SUCCEEDED = "Succeeded"
POD_FAILED = "Failed"
POD_UNKNOWN = "Unknown"

HOST_PATH_DIRECTORY_OR_CREATE = "DirectoryOrCreate"
MOUNT_PROPAGATION_BIDIRECTIONAL = "Bidirectional"
RESTART_POLICY_NEVER = "Never"
TOLERATION_OP_EXISTS = "Exists"

# HTTP status codes returned by the API server
_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409

#: Connection level failures raised by the client outside of ApiException
_TRANSPORT_ERRORS = (HTTPError, OSError)

#: Host paths mounted into the provisioner: (volume name, path, bidirectional)
#: The device tree and LVM metadata directories propagate both ways so that
#: device nodes and metadata changes made in the pod are seen by the host
#: and by other instances of the driver.
HOST_PATHS = [
    ("devices", "/dev", True),
    ("modules", "/lib/modules", False),
    ("lvmbackup", "/etc/lvm/backup", True),
    ("lvmcache", "/etc/lvm/cache", True),
    ("lvmlock", "/run/lock/lvm", True),
]


def build_provisioner_pod(va: VolumeAction) -> client.V1Pod:
    """
    Build the privileged, node-pinned pod that runs ``va``.

    :param va: The volume action to encode.
    :returns: A ``V1Pod`` ready to be submitted.
    """
    volume_mounts = []
    volumes = []
    for name, path, bidirectional in HOST_PATHS:
        volume_mounts.append(
            client.V1VolumeMount(
                name=name,
                read_only=False,
                mount_path=path,
                mount_propagation=(
                    MOUNT_PROPAGATION_BIDIRECTIONAL if bidirectional else None
                ),
            )
        )
        volumes.append(
            client.V1Volume(
                name=name,
                host_path=client.V1HostPathVolumeSource(
                    path=path, type=HOST_PATH_DIRECTORY_OR_CREATE
                ),
            )
        )

    container = client.V1Container(
        name=CONTAINER_NAME_PREFIX + va.action.value,
        image=va.provisioner_image,
        command=[PROVISIONER_COMMAND],
        args=build_provisioner_args(va),
        volume_mounts=volume_mounts,
        termination_message_path=TERMINATION_MESSAGE_PATH,
        image_pull_policy=va.pull_policy.value,
        security_context=client.V1SecurityContext(privileged=True),
    )

    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(name=va.pod_name, namespace=va.namespace),
        spec=client.V1PodSpec(
            restart_policy=RESTART_POLICY_NEVER,
            # Bypass the scheduler: the action must run on this node.
            node_name=va.node_name,
            tolerations=[client.V1Toleration(operator=TOLERATION_OP_EXISTS)],
            containers=[container],
            volumes=volumes,
        ),
    )


class PodClient(ABC):
    """
    The cluster operations needed to run a provisioner pod.
    """

    @abstractmethod
    def create(self, pod):
        """
        Submit ``pod``.

        :raises: ``CsiLvmExistsError`` if a pod of the same name exists,
                 ``CsiLvmClusterError`` for other failures.
        """

    @abstractmethod
    def phase(self, name: str) -> str:
        """
        Return the current phase of pod ``name``.

        :raises: ``CsiLvmNotFoundError`` if the pod does not exist,
                 ``CsiLvmClusterError`` for other failures.
        """

    @abstractmethod
    def delete(self, name: str):
        """
        Delete pod ``name``.

        :raises: ``CsiLvmNotFoundError`` if the pod does not exist,
                 ``CsiLvmClusterError`` for other failures.
        """


def _translate_api_exception(err, what):
    if err.status == _HTTP_CONFLICT:
        return CsiLvmExistsError(f"{what} already exists")
    if err.status == _HTTP_NOT_FOUND:
        return CsiLvmNotFoundError(f"{what} not found")
    return CsiLvmClusterError(f"Error accessing {what}: {err.reason}", status=err.status)


class KubernetesPodClient(PodClient):
    """
    ``PodClient`` backed by a ``kubernetes.client.CoreV1Api`` instance.
    """

    def __init__(self, core_v1_api, namespace):
        """
        :param core_v1_api: An authenticated ``CoreV1Api``.
        :param namespace: The namespace provisioner pods are created in.
        """
        self.api = core_v1_api
        self.namespace = namespace

    def create(self, pod):
        _log_debug_provisioner("Creating pod %s/%s", self.namespace, pod.metadata.name)
        try:
            self.api.create_namespaced_pod(namespace=self.namespace, body=pod)
        except ApiException as err:
            raise _translate_api_exception(err, f"pod {pod.metadata.name}") from err
        except _TRANSPORT_ERRORS as err:
            raise CsiLvmClusterError(f"Error creating pod {pod.metadata.name}: {err}") from err

    def phase(self, name):
        try:
            pod = self.api.read_namespaced_pod(name=name, namespace=self.namespace)
        except ApiException as err:
            raise _translate_api_exception(err, f"pod {name}") from err
        except _TRANSPORT_ERRORS as err:
            raise CsiLvmClusterError(f"Error reading pod {name}: {err}") from err
        if pod.status is None or pod.status.phase is None:
            return POD_PENDING
        return pod.status.phase

    def delete(self, name):
        _log_debug_provisioner("Deleting pod %s/%s", self.namespace, name)
        try:
            self.api.delete_namespaced_pod(name=name, namespace=self.namespace)
        except ApiException as err:
            raise _translate_api_exception(err, f"pod {name}") from err
        except _TRANSPORT_ERRORS as err:
            raise CsiLvmClusterError(f"Error deleting pod {name}: {err}") from err
