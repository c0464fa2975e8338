import base64
import json
import logging
import os
import re
import subprocess
import urllib.request

import boto3
from botocore.exceptions import ClientError
from botocore.signers import RequestSigner

logger = logging.getLogger()
logger.setLevel(logging.INFO)

WORK_ROOT = "/tmp"
KFDEF_FILE = "kfctl_aws.yaml"
KUBEFLOW_NAMESPACE = "kubeflow"
LAYER_BIN_DIRS = ["/opt/kfctl", "/opt/kubectl", "/opt/helm"]

TOKEN_PREFIX = "k8s-aws-v1."
TOKEN_EXPIRES_IN = 60
SESSION_NAME = "kfctl-provisioner"

_REGION_LINE = re.compile(r"^([ \t]*region:[ \t]*).*$", re.MULTILINE)
_ROLES_BLOCK = re.compile(r"^(?P<indent>[ \t]*)roles:[ \t]*\n(?:(?P=indent)[ \t]*-[ \t]*.*\n?)+", re.MULTILINE)


def on_event(event, context):
    logger.info(f"Event: {json.dumps(event)}")

    request_type = event['RequestType']
    props = event['ResourceProperties']
    cluster_name = props['ClusterName']
    physical_id = f"{cluster_name}-kubeflow"

    try:
        if request_type in ['Create', 'Update']:
            kfdef_key = apply_kubeflow(props)
            return {
                'PhysicalResourceId': physical_id,
                'Data': {
                    'KfDefKey': kfdef_key,
                    'Status': 'APPLIED'
                }
            }

        elif request_type == 'Delete':
            status = delete_kubeflow(props)
            return {
                'PhysicalResourceId': physical_id,
                'Data': {'Status': status}
            }

        raise ValueError(f"Unsupported request type: {request_type}")

    except ClientError as e:
        logger.error(f"Error: {str(e)}")
        if request_type == 'Delete' and e.response['Error']['Code'] == 'ResourceNotFoundException':
            logger.info("Cluster not found during delete - treating as success")
            return {
                'PhysicalResourceId': physical_id,
                'Data': {'Status': 'NOT_FOUND'}
            }
        raise e
    except subprocess.CalledProcessError as e:
        # kfctl -V writes most of its diagnostics to stdout
        logger.error(f"{e.cmd[0]} exited with {e.returncode}")
        logger.error(f"stdout: {e.stdout}")
        logger.error(f"stderr: {e.stderr}")
        raise e


def is_complete(event, context):
    """Kubeflow is ready once every deployment in its namespace has all replicas ready"""
    if event['RequestType'] == 'Delete':
        return {'IsComplete': True}

    props = event['ResourceProperties']
    workdir = prepare_workdir(props['ClusterName'])
    kubeconfig = write_kubeconfig(props['ClusterName'], props['AdminRoleArn'], workdir)

    result = run_tool(
        ["kubectl", "get", "deployments", "-n", KUBEFLOW_NAMESPACE, "-o", "json"],
        kubeconfig,
        workdir
    )
    deployments = json.loads(result.stdout).get("items", [])
    pending = [d["metadata"]["name"] for d in deployments if not deployment_ready(d)]

    if not deployments:
        logger.info(f"No deployments in namespace {KUBEFLOW_NAMESPACE} yet")
        return {'IsComplete': False}
    if pending:
        logger.info(f"Waiting on {len(pending)} of {len(deployments)} deployments: {', '.join(pending)}")
        return {'IsComplete': False}

    logger.info(f"All {len(deployments)} Kubeflow deployments are ready")
    return {'IsComplete': True}


def deployment_ready(deployment):
    wanted = deployment.get("spec", {}).get("replicas", 1)
    ready = deployment.get("status", {}).get("readyReplicas", 0)
    return ready >= wanted


def apply_kubeflow(props):
    cluster_name = props['ClusterName']
    bucket = props['Bucket']
    region = os.environ['AWS_REGION']

    workdir = prepare_workdir(cluster_name)
    kubeconfig = write_kubeconfig(cluster_name, props['AdminRoleArn'], workdir)

    logger.info(f"Fetching KfDef from {props['ConfigUrl']}")
    kfdef = render_kfdef(fetch_config(props['ConfigUrl']), region, props.get('NodeRoleNames', []))
    kfdef_path = os.path.join(workdir, KFDEF_FILE)
    with open(kfdef_path, "w") as f:
        f.write(kfdef)

    logger.info(f"Applying Kubeflow to cluster: {cluster_name}")
    run_tool(["kfctl", "apply", "-V", "-f", kfdef_path], kubeconfig, workdir)

    key = kfdef_key(cluster_name)
    boto3.client('s3').put_object(Bucket=bucket, Key=key, Body=kfdef.encode("utf-8"))
    logger.info(f"Stored KfDef at s3://{bucket}/{key}")
    return key


def delete_kubeflow(props):
    cluster_name = props['ClusterName']
    bucket = props['Bucket']
    key = kfdef_key(cluster_name)

    try:
        body = boto3.client('s3').get_object(Bucket=bucket, Key=key)['Body'].read()
    except ClientError as e:
        if e.response['Error']['Code'] in ('NoSuchKey', 'NoSuchBucket'):
            logger.info(f"No KfDef stored at s3://{bucket}/{key} - nothing to delete")
            return 'NOT_APPLIED'
        raise

    workdir = prepare_workdir(cluster_name)
    kubeconfig = write_kubeconfig(cluster_name, props['AdminRoleArn'], workdir)
    kfdef_path = os.path.join(workdir, KFDEF_FILE)
    with open(kfdef_path, "wb") as f:
        f.write(body)

    logger.info(f"Deleting Kubeflow from cluster: {cluster_name}")
    run_tool(["kfctl", "delete", "-V", "-f", kfdef_path], kubeconfig, workdir)
    return 'DELETED'


def kfdef_key(cluster_name):
    return f"{cluster_name}/{KFDEF_FILE}"


def prepare_workdir(cluster_name):
    workdir = os.path.join(WORK_ROOT, cluster_name)
    os.makedirs(workdir, exist_ok=True)
    return workdir


def fetch_config(url):
    with urllib.request.urlopen(url, timeout=30) as response:
        return response.read().decode("utf-8")


def render_kfdef(kfdef, region, node_role_names):
    """
    Point the KfAwsPlugin at this cluster: set its region and replace the
    example node instance roles with ours.
    """
    kfdef = _REGION_LINE.sub(lambda m: f"{m.group(1)}{region}", kfdef)
    if node_role_names:
        def _roles(match):
            indent = match.group("indent")
            items = "".join(f"{indent}- {name}\n" for name in node_role_names)
            return f"{indent}roles:\n{items}"
        kfdef = _ROLES_BLOCK.sub(_roles, kfdef)
    return kfdef


def assume_admin_session(role_arn, region):
    credentials = boto3.client('sts').assume_role(
        RoleArn=role_arn,
        RoleSessionName=SESSION_NAME
    )['Credentials']
    return boto3.Session(
        aws_access_key_id=credentials['AccessKeyId'],
        aws_secret_access_key=credentials['SecretAccessKey'],
        aws_session_token=credentials['SessionToken'],
        region_name=region
    )


def get_bearer_token(session, cluster_name, region):
    """Presigned STS GetCallerIdentity URL, the token format aws-iam-authenticator accepts"""
    sts = session.client('sts', region_name=region)
    signer = RequestSigner(
        sts.meta.service_model.service_id,
        region,
        'sts',
        'v4',
        session.get_credentials(),
        session.events
    )
    url = signer.generate_presigned_url(
        {
            'method': 'GET',
            'url': f"https://sts.{region}.amazonaws.com/?Action=GetCallerIdentity&Version=2011-06-15",
            'body': {},
            'headers': {'x-k8s-aws-id': cluster_name},
            'context': {}
        },
        region_name=region,
        expires_in=TOKEN_EXPIRES_IN,
        operation_name=''
    )
    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("utf-8")
    return TOKEN_PREFIX + encoded.rstrip("=")


def build_kubeconfig(cluster_name, endpoint, certificate_authority, token):
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": cluster_name,
            "cluster": {
                "server": endpoint,
                "certificate-authority-data": certificate_authority
            }
        }],
        "contexts": [{
            "name": cluster_name,
            "context": {"cluster": cluster_name, "user": SESSION_NAME}
        }],
        "current-context": cluster_name,
        "users": [{
            "name": SESSION_NAME,
            "user": {"token": token}
        }]
    }


def write_kubeconfig(cluster_name, admin_role_arn, workdir):
    region = os.environ['AWS_REGION']
    cluster = boto3.client('eks').describe_cluster(name=cluster_name)['cluster']
    session = assume_admin_session(admin_role_arn, region)
    token = get_bearer_token(session, cluster_name, region)

    path = os.path.join(workdir, "kubeconfig")
    # JSON is valid YAML, which is all kubectl and kfctl require
    with open(path, "w") as f:
        json.dump(
            build_kubeconfig(cluster_name, cluster['endpoint'], cluster['certificateAuthority']['data'], token),
            f
        )
    return path


def run_tool(args, kubeconfig, workdir):
    env = dict(os.environ)
    env["KUBECONFIG"] = kubeconfig
    env["HOME"] = workdir
    env["PATH"] = os.pathsep.join(LAYER_BIN_DIRS + [env.get("PATH", "")])

    logger.info(f"Running: {' '.join(args)}")
    result = subprocess.run(args, cwd=workdir, env=env, capture_output=True, text=True, check=True)
    if result.stdout:
        logger.info(result.stdout)
    return result
