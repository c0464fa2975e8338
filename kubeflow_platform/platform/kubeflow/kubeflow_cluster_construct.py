import os
from typing import List, Sequence

from aws_cdk import (
    aws_eks as eks,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_logs as logs,
    aws_s3 as s3,
    custom_resources as cr,
    CfnOutput,
    CustomResource,
    Duration,
)
from constructs import Construct

HANDLER_DIR = os.path.join(os.path.dirname(__file__), "handler")


class KubeflowCluster(Construct):
    """
    Installs Kubeflow onto an EKS cluster by running `kfctl apply` from a
    Lambda-backed custom resource, then polls until the kubeflow namespace
    reports every deployment ready.
    """
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        cluster: eks.ICluster,
        layers: Sequence[lambda_.ILayerVersion],
        config_url: str,
        bucket: s3.IBucket,
        admin_role: iam.Role,
        node_roles: List[iam.IRole],
        **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.handler_role = self._create_handler_role(cluster, bucket, admin_role, node_roles)

        # The handler mints its cluster token as the masters role
        admin_role.assume_role_policy.add_statements(
            iam.PolicyStatement(
                actions=["sts:AssumeRole"],
                principals=[iam.ArnPrincipal(self.handler_role.role_arn)]
            )
        )

        code = lambda_.Code.from_asset(HANDLER_DIR)
        function_props = dict(
            runtime=lambda_.Runtime.PYTHON_3_12,
            code=code,
            role=self.handler_role,
            layers=list(layers),
            memory_size=1024,
            timeout=Duration.minutes(15),
        )

        self.on_event_handler = lambda_.Function(
            self, "KfctlApplyFunction",
            handler="kfctl_provisioner.on_event",
            description="Runs kfctl apply/delete against the EKS cluster",
            **function_props
        )

        self.is_complete_handler = lambda_.Function(
            self, "KfctlReadyFunction",
            handler="kfctl_provisioner.is_complete",
            description="Checks that Kubeflow deployments are ready",
            **function_props
        )

        provider = cr.Provider(
            self, "KfctlProvider",
            on_event_handler=self.on_event_handler,
            is_complete_handler=self.is_complete_handler,
            query_interval=Duration.seconds(30),
            total_timeout=Duration.hours(1),
            log_retention=logs.RetentionDays.ONE_WEEK
        )

        self.resource = CustomResource(
            self, "KubeflowInstallation",
            service_token=provider.service_token,
            resource_type="Custom::KubeflowCluster",
            properties={
                "ClusterName": cluster.cluster_name,
                "ConfigUrl": config_url,
                "Bucket": bucket.bucket_name,
                "AdminRoleArn": admin_role.role_arn,
                "NodeRoleNames": [role.role_name for role in node_roles]
            }
        )
        self.resource.node.add_dependency(cluster)

        CfnOutput(self, "KfDefKey",
            value=self.resource.get_att_string("KfDefKey"),
            description="S3 key of the KfDef applied to the cluster"
        )

    def _create_handler_role(self, cluster, bucket, admin_role, node_roles):
        """IAM role for the kfctl Lambdas"""
        role = iam.Role(
            self, "KfctlHandlerRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                )
            ]
        )

        role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["sts:AssumeRole"],
                resources=[admin_role.role_arn]
            )
        )

        role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["eks:DescribeCluster"],
                resources=[cluster.cluster_arn]
            )
        )

        # kfctl's AWS plugin attaches its inline policies to the node roles
        if node_roles:
            role.add_to_policy(
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "iam:PutRolePolicy",
                        "iam:DeleteRolePolicy",
                        "iam:GetRolePolicy",
                        "iam:ListRolePolicies",
                        "iam:GetRole"
                    ],
                    resources=[node_role.role_arn for node_role in node_roles]
                )
            )

        bucket.grant_read_write(role)
        return role
