from aws_cdk import (
    aws_ec2 as ec2,
    aws_eks as eks,
    aws_iam as iam,
    Stack,
    CfnOutput
)
from constructs import Construct
from kubeflow_platform.config import ConsoleConfig, KubeflowConfig, constants


class EksConsole(Construct):
    """
    Admin workstation in the private subnets with kubectl and kfctl installed,
    reached through SSM Session Manager
    """
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        cluster: eks.Cluster,
        console_config: ConsoleConfig,
        kubeflow_config: KubeflowConfig,
        **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.role = iam.Role(
            self, "ConsoleRole",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonSSMManagedInstanceCore")
            ]
        )
        self.role.add_to_policy(
            iam.PolicyStatement(
                actions=["eks:DescribeCluster"],
                resources=[cluster.cluster_arn]
            )
        )
        cluster.aws_auth.add_role_mapping(self.role, groups=[constants.MASTERS_GROUP])

        self.security_group = ec2.SecurityGroup(
            self, "ConsoleSecurityGroup",
            vpc=vpc,
            description="Kubeflow EKS console",
            allow_all_outbound=True
        )
        cluster.cluster_security_group.add_ingress_rule(
            self.security_group,
            ec2.Port.tcp(443),
            "Console access to the Kubernetes API"
        )

        self.instance = ec2.Instance(
            self, "ConsoleInstance",
            instance_type=ec2.InstanceType(console_config.instance_type),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(),
            role=self.role,
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            security_group=self.security_group,
            require_imdsv2=True,
            block_devices=[
                ec2.BlockDevice(
                    device_name="/dev/xvda",
                    volume=ec2.BlockDeviceVolume.ebs(30, encrypted=True)
                )
            ]
        )
        self._install_tools(cluster, kubeflow_config)

        # Only useful once the API server accepts the console role
        self.instance.node.add_dependency(cluster.aws_auth)

        CfnOutput(self, "ConsoleInstanceId",
            value=self.instance.instance_id,
            description="Start a shell with: aws ssm start-session --target <id>"
        )

    def _install_tools(self, cluster, kubeflow_config):
        region = Stack.of(self).region
        self.instance.user_data.add_commands(
            f"curl -fsSL -o /usr/local/bin/kubectl https://dl.k8s.io/release/{kubeflow_config.kubectl_version}/bin/linux/amd64/kubectl",
            "chmod +x /usr/local/bin/kubectl",
            f"curl -fsSL {kubeflow_config.kfctl_download_url} | tar -xz -C /usr/local/bin",
            "chmod +x /usr/local/bin/kfctl",
            # ssm-user is created on first session, so share one kubeconfig system-wide
            f"aws eks update-kubeconfig --name {cluster.cluster_name} --region {region} --kubeconfig /etc/kubeconfig",
            "chmod 0644 /etc/kubeconfig",
            "echo 'export KUBECONFIG=/etc/kubeconfig' > /etc/profile.d/kubeconfig.sh"
        )
