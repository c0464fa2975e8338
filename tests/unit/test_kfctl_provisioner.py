import base64
import json
import logging
import os
import subprocess
from unittest.mock import MagicMock, patch

import boto3
import pytest
from botocore.exceptions import ClientError

from kubeflow_platform.platform.kubeflow.handler import kfctl_provisioner

KFDEF = """apiVersion: kfdef.apps.kubeflow.org/v1beta1
kind: KfDef
metadata:
  namespace: kubeflow
spec:
  applications:
  - kustomizeConfig:
      repoRef:
        name: manifests
        path: namespaces/base
    name: namespaces
  plugins:
  - kind: KfAwsPlugin
    metadata:
      name: aws
    spec:
      auth:
        basicAuth:
          password: 12341234
          username: admin@kubeflow.org
      region: us-west-2
      roles:
      - eksctl-kubeflow-aws-nodegroup-ng-a2-NodeInstanceRole-xxxxxxx
  repos:
  - name: manifests
    uri: https://github.com/kubeflow/manifests/archive/v0.7-branch.tar.gz
  version: v0.7-branch
"""

PROPS = {
    "ClusterName": "kubeflow-dev",
    "ConfigUrl": "https://example.com/kfctl_aws.yaml",
    "Bucket": "123456789012kubeflow-demo",
    "AdminRoleArn": "arn:aws:iam::123456789012:role/AdminRole",
    "NodeRoleNames": ["NodeInstanceRoleA"]
}


def _event(request_type, props=None):
    return {
        "RequestType": request_type,
        "ResourceProperties": dict(props or PROPS)
    }


def _client_error(code, operation):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture(autouse=True)
def lambda_environment(tmp_path):
    with patch.dict(os.environ, {"AWS_REGION": "eu-west-1"}), \
            patch.object(kfctl_provisioner, "WORK_ROOT", str(tmp_path)):
        yield tmp_path


def test_render_kfdef_sets_region_and_roles():
    rendered = kfctl_provisioner.render_kfdef(KFDEF, "eu-west-1", ["RoleA", "RoleB"])

    assert "      region: eu-west-1\n" in rendered
    assert "      roles:\n      - RoleA\n      - RoleB\n" in rendered
    assert "NodeInstanceRole-xxxxxxx" not in rendered
    # Everything after the plugin block is untouched
    assert rendered.endswith("  version: v0.7-branch\n")


def test_render_kfdef_keeps_roles_without_node_roles():
    rendered = kfctl_provisioner.render_kfdef(KFDEF, "eu-west-1", [])
    assert "NodeInstanceRole-xxxxxxx" in rendered


@pytest.mark.parametrize("deployment,ready", [
    ({"spec": {"replicas": 2}, "status": {"readyReplicas": 2}}, True),
    ({"spec": {"replicas": 2}, "status": {"readyReplicas": 1}}, False),
    ({"spec": {"replicas": 1}, "status": {}}, False),
    ({"spec": {"replicas": 0}, "status": {}}, True),
])
def test_deployment_ready(deployment, ready):
    assert kfctl_provisioner.deployment_ready(deployment) is ready


def test_build_kubeconfig():
    config = kfctl_provisioner.build_kubeconfig("kubeflow-dev", "https://api", "Q0E=", "k8s-aws-v1.abc")

    assert config["current-context"] == "kubeflow-dev"
    assert config["clusters"][0]["cluster"]["server"] == "https://api"
    assert config["users"][0]["user"]["token"] == "k8s-aws-v1.abc"


def test_get_bearer_token_is_presigned_sts_url():
    session = boto3.Session(
        aws_access_key_id="AKIDEXAMPLE",
        aws_secret_access_key="secret",
        region_name="eu-west-1"
    )
    token = kfctl_provisioner.get_bearer_token(session, "kubeflow-dev", "eu-west-1")

    assert token.startswith("k8s-aws-v1.")
    encoded = token[len("k8s-aws-v1."):]
    url = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8")
    assert url.startswith("https://sts.eu-west-1.amazonaws.com/?Action=GetCallerIdentity")
    assert "X-Amz-Signature=" in url
    assert "x-k8s-aws-id" in url


@patch.object(kfctl_provisioner, "boto3")
@patch.object(kfctl_provisioner, "run_tool")
@patch.object(kfctl_provisioner, "fetch_config", return_value=KFDEF)
@patch.object(kfctl_provisioner, "write_kubeconfig", return_value="/tmp/kubeconfig")
def test_create_applies_kfdef_and_stores_it(write_kubeconfig, fetch_config, run_tool, mock_boto3, lambda_environment):
    s3 = MagicMock()
    mock_boto3.client.return_value = s3

    response = kfctl_provisioner.on_event(_event("Create"), None)

    assert response["PhysicalResourceId"] == "kubeflow-dev-kubeflow"
    assert response["Data"] == {"KfDefKey": "kubeflow-dev/kfctl_aws.yaml", "Status": "APPLIED"}
    fetch_config.assert_called_once_with("https://example.com/kfctl_aws.yaml")

    kfdef_path = str(lambda_environment / "kubeflow-dev" / "kfctl_aws.yaml")
    run_tool.assert_called_once_with(
        ["kfctl", "apply", "-V", "-f", kfdef_path],
        "/tmp/kubeconfig",
        str(lambda_environment / "kubeflow-dev")
    )
    with open(kfdef_path) as f:
        written = f.read()
    assert "region: eu-west-1" in written
    assert "- NodeInstanceRoleA" in written

    s3.put_object.assert_called_once()
    kwargs = s3.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "123456789012kubeflow-demo"
    assert kwargs["Key"] == "kubeflow-dev/kfctl_aws.yaml"
    assert kwargs["Body"] == written.encode("utf-8")


@patch.object(kfctl_provisioner, "boto3")
@patch.object(kfctl_provisioner, "run_tool")
@patch.object(kfctl_provisioner, "fetch_config", return_value=KFDEF)
@patch.object(kfctl_provisioner, "write_kubeconfig", return_value="/tmp/kubeconfig")
def test_update_reapplies(write_kubeconfig, fetch_config, run_tool, mock_boto3):
    response = kfctl_provisioner.on_event(_event("Update"), None)

    assert response["Data"]["Status"] == "APPLIED"
    assert run_tool.call_args.args[0][:2] == ["kfctl", "apply"]


@patch.object(kfctl_provisioner, "run_tool")
@patch.object(kfctl_provisioner, "fetch_config", return_value=KFDEF)
@patch.object(kfctl_provisioner, "write_kubeconfig", return_value="/tmp/kubeconfig")
def test_failed_apply_propagates(write_kubeconfig, fetch_config, run_tool):
    run_tool.side_effect = subprocess.CalledProcessError(1, ["kfctl", "apply"], stderr="boom")

    with pytest.raises(subprocess.CalledProcessError):
        kfctl_provisioner.on_event(_event("Create"), None)


@patch.object(kfctl_provisioner, "run_tool")
@patch.object(kfctl_provisioner, "fetch_config", return_value=KFDEF)
@patch.object(kfctl_provisioner, "write_kubeconfig", return_value="/tmp/kubeconfig")
def test_failed_apply_logs_stdout_and_stderr(write_kubeconfig, fetch_config, run_tool, caplog):
    run_tool.side_effect = subprocess.CalledProcessError(
        1, ["kfctl", "apply"], output="INFO applying kustomize package", stderr="boom")

    with caplog.at_level(logging.ERROR):
        with pytest.raises(subprocess.CalledProcessError):
            kfctl_provisioner.on_event(_event("Create"), None)

    assert "kfctl exited with 1" in caplog.text
    assert "INFO applying kustomize package" in caplog.text
    assert "boom" in caplog.text


@patch.object(kfctl_provisioner, "boto3")
@patch.object(kfctl_provisioner, "run_tool")
@patch.object(kfctl_provisioner, "write_kubeconfig", return_value="/tmp/kubeconfig")
def test_delete_runs_kfctl_delete_with_stored_kfdef(write_kubeconfig, run_tool, mock_boto3, lambda_environment):
    s3 = MagicMock()
    s3.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=KFDEF.encode("utf-8")))}
    mock_boto3.client.return_value = s3

    response = kfctl_provisioner.on_event(_event("Delete"), None)

    assert response == {"PhysicalResourceId": "kubeflow-dev-kubeflow", "Data": {"Status": "DELETED"}}
    kfdef_path = str(lambda_environment / "kubeflow-dev" / "kfctl_aws.yaml")
    assert run_tool.call_args.args[0] == ["kfctl", "delete", "-V", "-f", kfdef_path]


@patch.object(kfctl_provisioner, "boto3")
@patch.object(kfctl_provisioner, "run_tool")
def test_delete_without_stored_kfdef_is_a_no_op(run_tool, mock_boto3):
    s3 = MagicMock()
    s3.get_object.side_effect = _client_error("NoSuchKey", "GetObject")
    mock_boto3.client.return_value = s3

    response = kfctl_provisioner.on_event(_event("Delete"), None)

    assert response["Data"] == {"Status": "NOT_APPLIED"}
    run_tool.assert_not_called()


@patch.object(kfctl_provisioner, "boto3")
@patch.object(kfctl_provisioner, "run_tool")
@patch.object(kfctl_provisioner, "write_kubeconfig")
def test_delete_with_missing_cluster_succeeds(write_kubeconfig, run_tool, mock_boto3):
    s3 = MagicMock()
    s3.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"kind: KfDef\n"))}
    mock_boto3.client.return_value = s3
    write_kubeconfig.side_effect = _client_error("ResourceNotFoundException", "DescribeCluster")

    response = kfctl_provisioner.on_event(_event("Delete"), None)

    assert response == {"PhysicalResourceId": "kubeflow-dev-kubeflow", "Data": {"Status": "NOT_FOUND"}}
    run_tool.assert_not_called()


@patch.object(kfctl_provisioner, "fetch_config", return_value=KFDEF)
@patch.object(kfctl_provisioner, "write_kubeconfig")
def test_missing_cluster_on_create_propagates(write_kubeconfig, fetch_config):
    write_kubeconfig.side_effect = _client_error("ResourceNotFoundException", "DescribeCluster")

    with pytest.raises(ClientError):
        kfctl_provisioner.on_event(_event("Create"), None)


def test_unknown_request_type_is_rejected():
    with pytest.raises(ValueError, match="Unsupported request type"):
        kfctl_provisioner.on_event(_event("Replace"), None)


def test_is_complete_on_delete():
    assert kfctl_provisioner.is_complete(_event("Delete"), None) == {"IsComplete": True}


def _kubectl_result(items):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=json.dumps({"items": items}), stderr="")


@pytest.mark.parametrize("items,complete", [
    ([], False),
    ([
        {"metadata": {"name": "centraldashboard"}, "spec": {"replicas": 1}, "status": {"readyReplicas": 1}},
        {"metadata": {"name": "jupyter-web-app"}, "spec": {"replicas": 1}, "status": {}},
    ], False),
    ([
        {"metadata": {"name": "centraldashboard"}, "spec": {"replicas": 1}, "status": {"readyReplicas": 1}},
        {"metadata": {"name": "jupyter-web-app"}, "spec": {"replicas": 2}, "status": {"readyReplicas": 2}},
    ], True),
])
@patch.object(kfctl_provisioner, "run_tool")
@patch.object(kfctl_provisioner, "write_kubeconfig", return_value="/tmp/kubeconfig")
def test_is_complete_waits_for_deployments(write_kubeconfig, run_tool, items, complete):
    run_tool.return_value = _kubectl_result(items)

    assert kfctl_provisioner.is_complete(_event("Create"), None) == {"IsComplete": complete}
    assert run_tool.call_args.args[0] == ["kubectl", "get", "deployments", "-n", "kubeflow", "-o", "json"]


@patch.object(kfctl_provisioner, "boto3")
@patch.object(kfctl_provisioner, "get_bearer_token", return_value="k8s-aws-v1.token")
def test_write_kubeconfig(get_bearer_token, mock_boto3, lambda_environment):
    eks = MagicMock()
    eks.describe_cluster.return_value = {
        "cluster": {"endpoint": "https://api.eks", "certificateAuthority": {"data": "Q0E="}}
    }
    sts = MagicMock()
    sts.assume_role.return_value = {
        "Credentials": {"AccessKeyId": "AKID", "SecretAccessKey": "secret", "SessionToken": "token"}
    }
    mock_boto3.client.side_effect = lambda service: {"eks": eks, "sts": sts}[service]

    path = kfctl_provisioner.write_kubeconfig("kubeflow-dev", PROPS["AdminRoleArn"], str(lambda_environment))

    sts.assume_role.assert_called_once_with(RoleArn=PROPS["AdminRoleArn"], RoleSessionName="kfctl-provisioner")
    mock_boto3.Session.assert_called_once_with(
        aws_access_key_id="AKID",
        aws_secret_access_key="secret",
        aws_session_token="token",
        region_name="eu-west-1"
    )
    with open(path) as f:
        config = json.load(f)
    assert config["clusters"][0]["cluster"]["server"] == "https://api.eks"
    assert config["users"][0]["user"]["token"] == "k8s-aws-v1.token"


@patch.object(kfctl_provisioner.subprocess, "run")
def test_run_tool_puts_layer_binaries_on_path(mock_run, lambda_environment):
    kfctl_provisioner.run_tool(["kfctl", "version"], "/tmp/kubeconfig", str(lambda_environment))

    env = mock_run.call_args.kwargs["env"]
    assert env["KUBECONFIG"] == "/tmp/kubeconfig"
    assert env["PATH"].split(os.pathsep)[:3] == ["/opt/kfctl", "/opt/kubectl", "/opt/helm"]
    assert mock_run.call_args.kwargs["check"] is True
