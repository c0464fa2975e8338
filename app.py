#!/usr/bin/env python3
import os

from aws_cdk import App, Environment, Aspects
from cdk_nag import AwsSolutionsChecks

from kubeflow_platform import (
    VpcStack,
    ToolLayersStack,
    EksClusterStack,
    KubeflowCluster,
    EnvironmentConfig,
)
from kubeflow_platform.infrastructure.storage import parse_bucket_timestamp
from kubeflow_platform.nag_suppressions import add_nag_suppressions

# Initialize the CDK app
app = App()

# Get target environment from context
environment = app.node.try_get_context("environment") or "development"

# Pin the bucket name across deploys with -c bucket_timestamp=YYYYMMDDHHMMSS
bucket_timestamp = parse_bucket_timestamp(app.node.try_get_context("bucket_timestamp"))

# Create environment configuration
account = os.getenv('CDK_DEFAULT_ACCOUNT')
region = os.getenv('CDK_DEFAULT_REGION')
cdk_env = Environment(account=account, region=region)

config = EnvironmentConfig.for_environment(environment, account, region)

# Create the infrastructure layer
vpc_stack = VpcStack(
    app,
    "NetworkStack",
    network_config=config.network,
    env=cdk_env
)

layers_stack = ToolLayersStack(
    app,
    "ToolLayersStack",
    kubeflow_config=config.kubeflow,
    env=cdk_env
)

# Create the EKS cluster and its KfDef bucket
eks_cluster_stack = EksClusterStack(
    app,
    "EksClusterStack",
    vpc=vpc_stack.vpc,
    kubectl_layer=layers_stack.kubectl_layer,
    eks_config=config.eks,
    kubeflow_config=config.kubeflow,
    console_config=config.console,
    bucket_timestamp=bucket_timestamp,
    env=cdk_env
)

# Install Kubeflow onto the cluster with kfctl
kubeflow = KubeflowCluster(
    eks_cluster_stack,
    "KfCluster",
    cluster=eks_cluster_stack.cluster,
    layers=layers_stack.layers,
    config_url=config.kubeflow.config_url,
    bucket=eks_cluster_stack.bucket,
    admin_role=eks_cluster_stack.admin_role,
    node_roles=eks_cluster_stack.node_roles
)
# kfctl's AWS plugin expects workers to be up before it applies
kubeflow.node.add_dependency(eks_cluster_stack.node_group)

# Add dependencies
eks_cluster_stack.add_dependency(vpc_stack)
eks_cluster_stack.add_dependency(layers_stack)

# Apply cdk-nag suppressions
add_nag_suppressions([vpc_stack, layers_stack, eks_cluster_stack])
if str(app.node.try_get_context("run_nag")).lower() == "true":
    Aspects.of(app).add(AwsSolutionsChecks(verbose=True))

# Synthesize the CloudFormation templates
app.synth()
