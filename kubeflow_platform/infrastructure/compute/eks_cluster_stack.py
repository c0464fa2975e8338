from datetime import datetime
from typing import Optional

from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    aws_eks as eks,
    aws_iam as iam,
    aws_lambda as lambda_,
    CfnOutput,
)
from constructs import Construct
from kubeflow_platform.config import EksConfig, ConsoleConfig, KubeflowConfig, constants
from kubeflow_platform.infrastructure.storage import ClusterBucket
from kubeflow_platform.platform.console import EksConsole


class EksClusterStack(Stack):
    """
    Creates the EKS cluster Kubeflow is installed on, its admin role,
    a managed node group sized for the Kubeflow control plane and the
    bucket the kfctl provisioner stores KfDef files in
    """
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        kubectl_layer: lambda_.ILayerVersion,
        eks_config: EksConfig,
        kubeflow_config: KubeflowConfig,
        console_config: ConsoleConfig,
        bucket_timestamp: Optional[datetime] = None,
        **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # first define the role
        self.admin_role = iam.Role(
            self, "AdminRole",
            assumed_by=iam.AccountRootPrincipal(),
            description="system:masters role for the Kubeflow cluster"
        )

        self.cluster = eks.Cluster(self, "KubeflowCluster",
            version=eks.KubernetesVersion.of(eks_config.version),
            cluster_name=eks_config.cluster_name,
            masters_role=self.admin_role,
            default_capacity=0,  # capacity comes from the managed node group below
            vpc=vpc,
            vpc_subnets=[ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                one_per_az=True
            )],
            kubectl_layer=kubectl_layer,
            endpoint_access=eks.EndpointAccess.PUBLIC_AND_PRIVATE,
            output_cluster_name=True
        )

        self.node_group = self._add_node_group(eks_config)
        self._add_kubeflow_node_policies()
        self._configure_admin_access(eks_config)

        self.cluster_bucket = ClusterBucket(
            self, "ClusterBucket",
            kubeflow_config=kubeflow_config,
            timestamp=bucket_timestamp
        )
        self.bucket = self.cluster_bucket.bucket

        self.console = None
        if console_config.enabled:
            self.console = EksConsole(
                self, "eksConsole",
                vpc=vpc,
                cluster=self.cluster,
                console_config=console_config,
                kubeflow_config=kubeflow_config
            )

        self._add_outputs()

    def _add_node_group(self, eks_config: EksConfig) -> eks.Nodegroup:
        """Managed node group in the private subnets"""
        sizing = eks_config.node_group
        node_group = self.cluster.add_nodegroup_capacity(
            "KubeflowNodeGroup",
            instance_types=[ec2.InstanceType(sizing.instance_type)],
            min_size=sizing.min_size,
            desired_size=sizing.desired_size,
            max_size=sizing.max_size,
            disk_size=sizing.disk_size,
            subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            # Don't push upgrades through pod disruption budgets
            force_update=False
        )
        node_group.role.add_managed_policy(
            iam.ManagedPolicy.from_aws_managed_policy_name("AmazonSSMManagedInstanceCore")
        )
        return node_group

    def _add_kubeflow_node_policies(self):
        """Permissions Kubeflow's in-cluster controllers use through the node role"""
        self.kubeflow_node_policy = iam.ManagedPolicy(
            self, "KubeflowNodePolicy",
            description="ALB ingress, FSx CSI and profile controller access for Kubeflow",
            roles=[self.node_group.role],
            statements=[
                # ALB ingress controller
                iam.PolicyStatement(
                    sid="AlbIngressController",
                    actions=[
                        "acm:DescribeCertificate",
                        "acm:ListCertificates",
                        "acm:GetCertificate",
                        "ec2:AuthorizeSecurityGroupIngress",
                        "ec2:CreateSecurityGroup",
                        "ec2:CreateTags",
                        "ec2:DeleteTags",
                        "ec2:DeleteSecurityGroup",
                        "ec2:DescribeAccountAttributes",
                        "ec2:DescribeAddresses",
                        "ec2:DescribeInstances",
                        "ec2:DescribeInstanceStatus",
                        "ec2:DescribeInternetGateways",
                        "ec2:DescribeNetworkInterfaces",
                        "ec2:DescribeSecurityGroups",
                        "ec2:DescribeSubnets",
                        "ec2:DescribeTags",
                        "ec2:DescribeVpcs",
                        "ec2:ModifyInstanceAttribute",
                        "ec2:ModifyNetworkInterfaceAttribute",
                        "ec2:RevokeSecurityGroupIngress",
                        "elasticloadbalancing:*",
                        "iam:GetServerCertificate",
                        "iam:ListServerCertificates",
                        "cognito-idp:DescribeUserPoolClient",
                        "waf-regional:GetWebACLForResource",
                        "waf-regional:GetWebACL",
                        "waf-regional:AssociateWebACL",
                        "waf-regional:DisassociateWebACL",
                        "tag:GetResources",
                        "tag:TagResources"
                    ],
                    resources=["*"]
                ),
                iam.PolicyStatement(
                    sid="ServiceLinkedRoles",
                    actions=["iam:CreateServiceLinkedRole"],
                    resources=["*"],
                    conditions={
                        "StringLike": {
                            "iam:AWSServiceName": [
                                "elasticloadbalancing.amazonaws.com",
                                "fsx.amazonaws.com",
                                "s3.data-source.lustre.fsx.amazonaws.com"
                            ]
                        }
                    }
                ),
                # FSx for Lustre CSI driver
                iam.PolicyStatement(
                    sid="FsxCsiDriver",
                    actions=[
                        "fsx:CreateFileSystem",
                        "fsx:DeleteFileSystem",
                        "fsx:DescribeFileSystems",
                        "fsx:TagResource",
                        "s3:ListBucket"
                    ],
                    resources=["*"]
                ),
                # Profile controller binds per-user IAM roles to namespaces
                iam.PolicyStatement(
                    sid="ProfileController",
                    actions=[
                        "iam:GetRole",
                        "iam:UpdateAssumeRolePolicy"
                    ],
                    resources=[f"arn:aws:iam::{self.account}:role/*"]
                )
            ]
        )

    def _configure_admin_access(self, eks_config: EksConfig):
        """Map an extra, pre-existing admin role if one is configured"""
        if eks_config.admin_role_arn:
            admin_role = iam.Role.from_role_arn(
                self, "ExternalAdminRole",
                eks_config.admin_role_arn
            )
            self.cluster.aws_auth.add_role_mapping(
                admin_role,
                groups=[constants.MASTERS_GROUP]
            )

    def _add_outputs(self):
        """Add CloudFormation outputs"""
        CfnOutput(self, "ClusterArn",
            value=self.cluster.cluster_arn,
            description="EKS cluster ARN"
        )

        CfnOutput(self, "AdminRoleArn",
            value=self.admin_role.role_arn,
            description="Role mapped to system:masters"
        )

        CfnOutput(self, "NodeRoleArn",
            value=self.node_group.role.role_arn,
            description="Node group instance role ARN"
        )

        CfnOutput(self, "KubectlConfigCommand",
            value=f"aws eks update-kubeconfig --name {self.cluster.cluster_name} --region {self.region} --role-arn {self.admin_role.role_arn}",
            description="Command to configure kubectl"
        )

    @property
    def cluster_name(self) -> str:
        """Get the cluster name"""
        return self.cluster.cluster_name

    @property
    def node_roles(self):
        """Instance roles kfctl attaches its AWS policies to"""
        return [self.node_group.role]
