# csilvm/provisioner/__init__.py - Privileged provisioner pods
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Delegation of volume actions to privileged pods on a target node.
"""
from ._action import (
    VolumeAction,
    build_provisioner_args,
    encode_s3_parameter,
    decode_s3_parameter,
)
from ._pod import (
    PodClient,
    KubernetesPodClient,
    build_provisioner_pod,
    POD_PENDING,
    POD_RUNNING,
    POD_SUCCEEDED,
    POD_FAILED,
    POD_UNKNOWN,
)
from ._retry import RetryPolicy, SystemClock, VirtualClock
from ._dispatch import Dispatcher, dispatch_privileged_action

__all__ = [
    "VolumeAction",
    "build_provisioner_args",
    "encode_s3_parameter",
    "decode_s3_parameter",
    "PodClient",
    "KubernetesPodClient",
    "build_provisioner_pod",
    "POD_PENDING",
    "POD_RUNNING",
    "POD_SUCCEEDED",
    "POD_FAILED",
    "POD_UNKNOWN",
    "RetryPolicy",
    "SystemClock",
    "VirtualClock",
    "Dispatcher",
    "dispatch_privileged_action",
]
