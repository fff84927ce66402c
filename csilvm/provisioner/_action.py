# csilvm/provisioner/_action.py - Provisioner volume actions
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volume actions and their provisioner command line encoding.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
from base64 import urlsafe_b64decode, urlsafe_b64encode
from json import dumps, loads, JSONDecodeError
from binascii import Error as BinasciiError

from csilvm import (
    ActionType,
    CsiLvmArgumentError,
    PullPolicy,
)

# provisioner subcommands
PROVISIONER_CREATE_LV = "createlv"
PROVISIONER_DELETE_LV = "deletelv"
PROVISIONER_CREATE_SNAPSHOT = "createsnapshot"
PROVISIONER_RESTORE_SNAPSHOT = "restoresnapshot"

# provisioner options
PROVISIONER_LVSIZE = "--lvsize"
PROVISIONER_DEVICES = "--devices"
PROVISIONER_LVMTYPE = "--lvmtype"
PROVISIONER_SNAPSHOTNAME = "--snapshotname"
PROVISIONER_S3PARAMETER = "--s3parameter"
PROVISIONER_BUFFER_PERCENTAGE = "--lvmsnapshotbufferpercentage"
PROVISIONER_LVNAME = "--lvname"
PROVISIONER_VGNAME = "--vgname"


def encode_s3_parameter(params: Optional[Mapping[str, str]]) -> str:
    """
    Encode the backup target parameters ``params`` as a single command line
    token.

    The encoding is canonical JSON (sorted keys, no whitespace) wrapped in
    URL-safe base64, so equal mappings always produce equal tokens.

    :param params: A mapping of parameter names to values, or ``None``.
    :returns: The encoded token.
    :rtype: ``str``
    """
    doc = dumps(dict(params or {}), sort_keys=True, separators=(",", ":"))
    return urlsafe_b64encode(doc.encode("utf8")).decode("ascii")


def decode_s3_parameter(token: str) -> Dict[str, str]:
    """
    Decode a token produced by ``encode_s3_parameter()``.

    :raises: ``CsiLvmArgumentError`` if ``token`` is not a valid encoding.
    """
    try:
        doc = loads(urlsafe_b64decode(token.encode("ascii")).decode("utf8"))
    except (BinasciiError, UnicodeError, JSONDecodeError) as err:
        raise CsiLvmArgumentError(f"Malformed s3 parameter: {err}") from err
    if not isinstance(doc, dict):
        raise CsiLvmArgumentError("Malformed s3 parameter: not a mapping")
    return doc


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class VolumeAction:
    """
    A volume operation to be run by a provisioner pod on ``node_name``.
    """

    action: ActionType
    name: str
    node_name: str
    vg_name: str = ""
    size: int = 0
    lvm_type: str = ""
    devices_pattern: str = ""
    provisioner_image: str = ""
    pull_policy: PullPolicy = PullPolicy.ALWAYS
    namespace: str = "default"
    snapshot_name: str = ""
    s3_parameter: Mapping[str, str] = field(default_factory=dict)
    snapshot_buffer_percentage: int = 0

    def validate(self):
        """
        Check the fields required to dispatch this action.

        :raises: ``CsiLvmArgumentError`` if the name or node are empty, or if
                 a create action has no LVM type.
        """
        if not isinstance(self.action, ActionType):
            raise CsiLvmArgumentError(f"unknown volume action: {self.action}")
        if not self.name or not self.node_name:
            raise CsiLvmArgumentError("invalid empty name or path or node")
        if self.action == ActionType.CREATE and not self.lvm_type:
            raise CsiLvmArgumentError("createlv without lvm type")

    @property
    def pod_name(self):
        """The name of the provisioner pod running this action."""
        return f"{self.action.value}-{self.name}"


def _create_args(va: VolumeAction) -> List[str]:
    return [
        PROVISIONER_CREATE_LV,
        PROVISIONER_LVSIZE,
        str(va.size),
        PROVISIONER_DEVICES,
        va.devices_pattern,
        PROVISIONER_LVMTYPE,
        va.lvm_type,
    ]


def _delete_args(_va: VolumeAction) -> List[str]:
    return [PROVISIONER_DELETE_LV]


def _create_snapshot_args(va: VolumeAction) -> List[str]:
    return [
        PROVISIONER_CREATE_SNAPSHOT,
        PROVISIONER_SNAPSHOTNAME,
        va.snapshot_name,
        PROVISIONER_S3PARAMETER,
        encode_s3_parameter(va.s3_parameter),
        PROVISIONER_LVSIZE,
        str(va.size),
        PROVISIONER_BUFFER_PERCENTAGE,
        str(va.snapshot_buffer_percentage),
    ]


def _restore_snapshot_args(va: VolumeAction) -> List[str]:
    return [
        PROVISIONER_RESTORE_SNAPSHOT,
        PROVISIONER_SNAPSHOTNAME,
        va.snapshot_name,
        PROVISIONER_S3PARAMETER,
        encode_s3_parameter(va.s3_parameter),
    ]


#: Argument builders for every ``ActionType``
_ACTION_ARGS = {
    ActionType.CREATE: _create_args,
    ActionType.DELETE: _delete_args,
    ActionType.CREATE_SNAPSHOT: _create_snapshot_args,
    ActionType.RESTORE_SNAPSHOT: _restore_snapshot_args,
}


def build_provisioner_args(va: VolumeAction) -> List[str]:
    """
    Return the provisioner command line arguments for ``va``.

    :raises: ``CsiLvmArgumentError`` if ``va.action`` has no encoding.
    """
    try:
        builder = _ACTION_ARGS[va.action]
    except KeyError as err:
        raise CsiLvmArgumentError(f"unknown volume action: {va.action}") from err
    return builder(va) + [PROVISIONER_LVNAME, va.name, PROVISIONER_VGNAME, va.vg_name]
