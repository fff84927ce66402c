# tests/test_provisioner.py - Provisioner pod and dispatcher tests
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import MagicMock
from base64 import urlsafe_b64encode
import logging

from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from csilvm import (
    ActionType,
    CsiLvmArgumentError,
    CsiLvmClusterError,
    CsiLvmExecutionFailedError,
    CsiLvmExistsError,
    CsiLvmNotFoundError,
    CsiLvmTimeoutError,
    PullPolicy,
)
from csilvm.provisioner import (
    Dispatcher,
    KubernetesPodClient,
    RetryPolicy,
    VirtualClock,
    VolumeAction,
    build_provisioner_args,
    build_provisioner_pod,
    decode_s3_parameter,
    dispatch_privileged_action,
    encode_s3_parameter,
    POD_FAILED,
    POD_PENDING,
    POD_RUNNING,
    POD_SUCCEEDED,
)
from csilvm.provisioner._action import _ACTION_ARGS

from tests import FakePodClient

log = logging.getLogger()


def _action(action=ActionType.DELETE, **kwargs):
    fields = {
        "action": action,
        "name": "pvc-1",
        "node_name": "node-2",
        "vg_name": "data",
        "provisioner_image": "metalstack/lvmplugin:v0.5.0",
    }
    fields.update(kwargs)
    return VolumeAction(**fields)


class VolumeActionTests(unittest.TestCase):
    """Test volume action validation and argument encoding"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def test_pod_name(self):
        self.assertEqual(_action().pod_name, "delete-pvc-1")
        self.assertEqual(_action(ActionType.CREATE_SNAPSHOT).pod_name, "createsnapshot-pvc-1")

    def test_validate_empty_name(self):
        with self.assertRaises(CsiLvmArgumentError):
            _action(name="").validate()

    def test_validate_empty_node(self):
        with self.assertRaises(CsiLvmArgumentError):
            _action(node_name="").validate()

    def test_validate_create_without_type(self):
        with self.assertRaises(CsiLvmArgumentError):
            _action(ActionType.CREATE, size=1024).validate()
        _action(ActionType.CREATE, size=1024, lvm_type="linear").validate()

    def test_validate_unknown_action(self):
        with self.assertRaises(CsiLvmArgumentError):
            _action("resize").validate()

    def test_every_action_has_arguments(self):
        for action in ActionType:
            with self.subTest(action=action):
                self.assertIn(action, _ACTION_ARGS)

    def test_create_args(self):
        va = _action(ActionType.CREATE, size=1073741824, lvm_type="striped", devices_pattern="/dev/nvme*n1")
        self.assertEqual(
            build_provisioner_args(va),
            [
                "createlv", "--lvsize", "1073741824", "--devices", "/dev/nvme*n1",
                "--lvmtype", "striped", "--lvname", "pvc-1", "--vgname", "data",
            ],
        )

    def test_delete_args(self):
        self.assertEqual(
            build_provisioner_args(_action()),
            ["deletelv", "--lvname", "pvc-1", "--vgname", "data"],
        )

    def test_create_snapshot_args(self):
        params = {"bucket": "backups", "endpoint": "https://s3.example.com"}
        va = _action(
            ActionType.CREATE_SNAPSHOT,
            size=5368709120,
            snapshot_name="pvc-1-snap",
            s3_parameter=params,
            snapshot_buffer_percentage=20,
        )
        self.assertEqual(
            build_provisioner_args(va),
            [
                "createsnapshot", "--snapshotname", "pvc-1-snap",
                "--s3parameter", encode_s3_parameter(params),
                "--lvsize", "5368709120", "--lvmsnapshotbufferpercentage", "20",
                "--lvname", "pvc-1", "--vgname", "data",
            ],
        )

    def test_restore_snapshot_args(self):
        va = _action(ActionType.RESTORE_SNAPSHOT, snapshot_name="pvc-1-snap")
        self.assertEqual(
            build_provisioner_args(va),
            [
                "restoresnapshot", "--snapshotname", "pvc-1-snap",
                "--s3parameter", encode_s3_parameter({}),
                "--lvname", "pvc-1", "--vgname", "data",
            ],
        )

    def test_unknown_action_args_raises(self):
        with self.assertRaises(CsiLvmArgumentError):
            build_provisioner_args(_action("resize"))

    def test_encode_s3_parameter_is_canonical(self):
        a = encode_s3_parameter({"bucket": "b", "region": "eu"})
        b = encode_s3_parameter({"region": "eu", "bucket": "b"})
        self.assertEqual(a, b)
        self.assertNotIn(" ", a)
        self.assertEqual(encode_s3_parameter(None), encode_s3_parameter({}))

    def test_decode_s3_parameter(self):
        params = {"accessKey": "AKIA", "bucket": "backups"}
        self.assertEqual(decode_s3_parameter(encode_s3_parameter(params)), params)

    def test_decode_s3_parameter_malformed(self):
        not_json = urlsafe_b64encode(b"bucket=backups").decode("ascii")
        with self.assertRaises(CsiLvmArgumentError):
            decode_s3_parameter(not_json)
        not_mapping = urlsafe_b64encode(b"[1, 2]").decode("ascii")
        with self.assertRaises(CsiLvmArgumentError):
            decode_s3_parameter(not_mapping)


class ProvisionerPodTests(unittest.TestCase):
    """Test provisioner pod construction"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def test_build_provisioner_pod(self):
        va = _action(pull_policy=PullPolicy.IF_NOT_PRESENT, namespace="csi-lvm")
        pod = build_provisioner_pod(va)

        self.assertEqual(pod.metadata.name, "delete-pvc-1")
        self.assertEqual(pod.metadata.namespace, "csi-lvm")
        self.assertEqual(pod.spec.restart_policy, "Never")
        self.assertEqual(pod.spec.node_name, "node-2")
        self.assertEqual(len(pod.spec.tolerations), 1)
        self.assertEqual(pod.spec.tolerations[0].operator, "Exists")

        self.assertEqual(len(pod.spec.containers), 1)
        container = pod.spec.containers[0]
        self.assertEqual(container.name, "csi-lvmplugin-delete")
        self.assertEqual(container.image, "metalstack/lvmplugin:v0.5.0")
        self.assertEqual(container.command, ["/csi-lvmplugin-provisioner"])
        self.assertEqual(container.args, build_provisioner_args(va))
        self.assertEqual(container.image_pull_policy, "IfNotPresent")
        self.assertEqual(container.termination_message_path, "/termination.log")
        self.assertTrue(container.security_context.privileged)

    def test_build_provisioner_pod_host_paths(self):
        pod = build_provisioner_pod(_action())
        mounts = {m.mount_path: m for m in pod.spec.containers[0].volume_mounts}
        self.assertEqual(
            sorted(mounts),
            sorted(["/dev", "/lib/modules", "/etc/lvm/backup", "/etc/lvm/cache", "/run/lock/lvm"]),
        )
        for path, mount in mounts.items():
            self.assertFalse(mount.read_only)
            if path == "/lib/modules":
                self.assertIsNone(mount.mount_propagation)
            else:
                self.assertEqual(mount.mount_propagation, "Bidirectional")

        volumes = {v.name: v for v in pod.spec.volumes}
        self.assertEqual(set(volumes), {m.name for m in mounts.values()})
        for volume in volumes.values():
            self.assertEqual(volume.host_path.type, "DirectoryOrCreate")

    def test_build_provisioner_pod_default_pull_policy(self):
        pod = build_provisioner_pod(_action())
        self.assertEqual(pod.spec.containers[0].image_pull_policy, "Always")


class KubernetesPodClientTests(unittest.TestCase):
    """Test the CoreV1Api backed pod client"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.api = MagicMock()
        self.pods = KubernetesPodClient(self.api, "csi-lvm")

    def test_create(self):
        pod = build_provisioner_pod(_action())
        self.pods.create(pod)
        self.api.create_namespaced_pod.assert_called_once_with(namespace="csi-lvm", body=pod)

    def test_create_conflict_raises_exists(self):
        self.api.create_namespaced_pod.side_effect = ApiException(status=409, reason="Conflict")
        with self.assertRaises(CsiLvmExistsError):
            self.pods.create(build_provisioner_pod(_action()))

    def test_create_other_error_raises_cluster_error(self):
        self.api.create_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")
        with self.assertRaises(CsiLvmClusterError) as cm:
            self.pods.create(build_provisioner_pod(_action()))
        self.assertEqual(cm.exception.status, 403)

    def test_phase(self):
        self.api.read_namespaced_pod.return_value.status.phase = POD_RUNNING
        self.assertEqual(self.pods.phase("delete-pvc-1"), POD_RUNNING)
        self.api.read_namespaced_pod.assert_called_once_with(name="delete-pvc-1", namespace="csi-lvm")

    def test_phase_without_status_is_pending(self):
        self.api.read_namespaced_pod.return_value.status = None
        self.assertEqual(self.pods.phase("delete-pvc-1"), POD_PENDING)

    def test_phase_not_found(self):
        self.api.read_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")
        with self.assertRaises(CsiLvmNotFoundError):
            self.pods.phase("delete-pvc-1")

    def test_delete(self):
        self.pods.delete("delete-pvc-1")
        self.api.delete_namespaced_pod.assert_called_once_with(name="delete-pvc-1", namespace="csi-lvm")

    def test_delete_server_error(self):
        self.api.delete_namespaced_pod.side_effect = ApiException(status=500, reason="Internal Server Error")
        with self.assertRaises(CsiLvmClusterError):
            self.pods.delete("delete-pvc-1")

    def test_transport_errors_raise_cluster_error(self):
        error = MaxRetryError(None, "/api/v1/namespaces/csi-lvm/pods", reason="connection refused")
        self.api.create_namespaced_pod.side_effect = error
        self.api.read_namespaced_pod.side_effect = error
        self.api.delete_namespaced_pod.side_effect = ConnectionResetError("reset by peer")
        with self.assertRaises(CsiLvmClusterError):
            self.pods.create(build_provisioner_pod(_action()))
        with self.assertRaises(CsiLvmClusterError):
            self.pods.phase("delete-pvc-1")
        with self.assertRaises(CsiLvmClusterError):
            self.pods.delete("delete-pvc-1")


class RetryPolicyTests(unittest.TestCase):
    def test_retry_policy_sleeps_before_each_attempt(self):
        clock = VirtualClock()
        attempts = list(RetryPolicy(interval=1.0, max_attempts=3, clock=clock))
        self.assertEqual(attempts, [0, 1, 2])
        self.assertEqual(clock.sleeps, 3)
        self.assertEqual(clock.now, 3.0)

    def test_retry_policy_from_seconds(self):
        policy = RetryPolicy.from_seconds(30, clock=VirtualClock())
        self.assertEqual(policy.interval, 1.0)
        self.assertEqual(policy.max_attempts, 30)

    def test_retry_policy_zero_attempts(self):
        clock = VirtualClock()
        self.assertEqual(list(RetryPolicy(max_attempts=0, clock=clock)), [])
        self.assertEqual(clock.sleeps, 0)

    def test_retry_policy_bad_values(self):
        with self.assertRaises(ValueError):
            RetryPolicy(interval=-1)
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=-1)


class DispatcherTests(unittest.TestCase):
    """Test provisioner pod dispatch with a virtual clock"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.clock = VirtualClock()

    def _dispatch(self, pods, va=None, retry_seconds=30):
        Dispatcher(pods, clock=self.clock).dispatch(va or _action(), retry_seconds)

    def test_dispatch_succeeds_at_fourth_second(self):
        pods = FakePodClient([POD_PENDING, POD_RUNNING, POD_RUNNING, POD_SUCCEEDED])
        self._dispatch(pods)
        self.assertEqual(len(pods.created), 1)
        self.assertEqual(pods.created[0].spec.node_name, "node-2")
        self.assertEqual(pods.polls, 4)
        self.assertEqual(self.clock.now, 4.0)
        self.assertLessEqual(self.clock.now, 5.0)
        self.assertEqual(pods.deleted, ["delete-pvc-1"])

    def test_dispatch_succeeds_first_poll(self):
        pods = FakePodClient([POD_SUCCEEDED])
        self._dispatch(pods)
        self.assertEqual(pods.polls, 1)
        self.assertEqual(pods.deleted, ["delete-pvc-1"])

    def test_dispatch_timeout_tears_down(self):
        pods = FakePodClient([POD_RUNNING])
        with self.assertRaises(CsiLvmTimeoutError) as cm:
            self._dispatch(pods, retry_seconds=10)
        self.assertIn("timeout after 10 seconds", str(cm.exception))
        self.assertEqual(pods.polls, 10)
        self.assertEqual(self.clock.now, 10.0)
        self.assertEqual(pods.deleted, ["delete-pvc-1"])

    def test_dispatch_failed_pod(self):
        pods = FakePodClient([POD_RUNNING, POD_FAILED])
        with self.assertRaises(CsiLvmExecutionFailedError) as cm:
            self._dispatch(pods)
        self.assertNotIsInstance(cm.exception, CsiLvmTimeoutError)
        self.assertTrue(cm.exception.reschedule)
        self.assertEqual(pods.polls, 2)
        self.assertEqual(pods.deleted, ["delete-pvc-1"])

    def test_dispatch_pod_gone_is_success(self):
        pods = FakePodClient([POD_RUNNING, CsiLvmNotFoundError("pod delete-pvc-1 not found")])
        self._dispatch(pods)
        self.assertEqual(pods.polls, 2)
        self.assertEqual(pods.deleted, [])

    def test_dispatch_transient_read_errors(self):
        pods = FakePodClient([
            CsiLvmClusterError("connection refused"),
            CsiLvmClusterError("connection refused"),
            POD_SUCCEEDED,
        ])
        self._dispatch(pods)
        self.assertEqual(pods.polls, 3)
        self.assertEqual(pods.deleted, ["delete-pvc-1"])

    def test_dispatch_existing_pod_is_polled(self):
        pods = FakePodClient([POD_SUCCEEDED], create_error=CsiLvmExistsError("pod exists"))
        self._dispatch(pods)
        self.assertEqual(pods.polls, 1)

    def test_dispatch_create_failure_raises(self):
        pods = FakePodClient([POD_SUCCEEDED], create_error=CsiLvmClusterError("forbidden", status=403))
        with self.assertRaises(CsiLvmClusterError):
            self._dispatch(pods)
        self.assertEqual(pods.polls, 0)
        self.assertEqual(pods.deleted, [])

    def test_dispatch_delete_errors_are_ignored(self):
        for error in (CsiLvmNotFoundError("gone"), CsiLvmClusterError("unavailable")):
            with self.subTest(error=error):
                pods = FakePodClient([POD_SUCCEEDED], delete_error=error)
                self._dispatch(pods)
                self.assertEqual(pods.deleted, ["delete-pvc-1"])

    def test_dispatch_invalid_action(self):
        pods = FakePodClient()
        with self.assertRaises(CsiLvmArgumentError):
            self._dispatch(pods, va=_action(node_name=""))
        self.assertEqual(pods.created, [])

    def test_dispatch_privileged_action(self):
        pods = FakePodClient([POD_SUCCEEDED])
        va = _action(ActionType.CREATE, size=1024, lvm_type="linear")
        dispatch_privileged_action(va, 5, pods, clock=self.clock)
        self.assertEqual(pods.created[0].metadata.name, "create-pvc-1")
        self.assertEqual(pods.deleted, ["create-pvc-1"])

    def test_dispatch_unreachable_api_server_times_out_and_deletes(self):
        api = MagicMock()
        api.read_namespaced_pod.side_effect = MaxRetryError(
            None, "/api/v1/namespaces/csi-lvm/pods/delete-pvc-1", reason="connection refused"
        )
        with self.assertRaises(CsiLvmTimeoutError):
            Dispatcher(KubernetesPodClient(api, "csi-lvm"), clock=self.clock).dispatch(_action(), 5)
        self.assertEqual(api.read_namespaced_pod.call_count, 5)
        api.delete_namespaced_pod.assert_called_once_with(name="delete-pvc-1", namespace="csi-lvm")

    def test_dispatch_unexpected_error_still_deletes(self):
        pods = FakePodClient([POD_RUNNING, RuntimeError("client bug")])
        with self.assertRaises(RuntimeError):
            self._dispatch(pods)
        self.assertEqual(pods.deleted, ["delete-pvc-1"])

    def test_dispatch_negative_retry_seconds(self):
        pods = FakePodClient([POD_SUCCEEDED])
        with self.assertRaises(CsiLvmArgumentError):
            self._dispatch(pods, retry_seconds=-1)
        self.assertEqual(pods.created, [])
        self.assertEqual(pods.deleted, [])

    def test_dispatch_zero_retry_seconds_times_out(self):
        pods = FakePodClient([POD_SUCCEEDED])
        with self.assertRaises(CsiLvmTimeoutError):
            self._dispatch(pods, retry_seconds=0)
        self.assertEqual(pods.polls, 0)
        self.assertEqual(pods.deleted, ["delete-pvc-1"])
