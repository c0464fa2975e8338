from aws_cdk import (
    Stack,
    Tags,
    aws_ec2 as ec2,
)
from constructs import Construct
from cdk_nag import NagSuppressions
from kubeflow_platform.config import NetworkConfig

PRIVATE_SUBNET_NAME = "private-eks"
PUBLIC_SUBNET_NAME = "public-alb-nat"


class VpcStack(Stack):
    """
    Creates the VPC Kubeflow runs in: private subnets for EKS nodes,
    public subnets for the ALB and NAT gateways
    """
    def __init__(self, scope: Construct, construct_id: str, network_config: NetworkConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.vpc = ec2.Vpc(self, "VPC",
            max_azs=network_config.max_azs,
            ip_addresses=ec2.IpAddresses.cidr(network_config.vpc_cidr),
            nat_gateways=network_config.nat_gateways,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    cidr_mask=network_config.cidr_mask,
                    name=PRIVATE_SUBNET_NAME,
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
                ),
                ec2.SubnetConfiguration(
                    cidr_mask=network_config.cidr_mask,
                    name=PUBLIC_SUBNET_NAME,
                    subnet_type=ec2.SubnetType.PUBLIC,
                    map_public_ip_on_launch=False
                )
            ],
            flow_logs=network_config.enable_flow_logs and {
                "flow-logs": ec2.FlowLogOptions(
                    destination=ec2.FlowLogDestination.to_cloud_watch_logs(),
                    traffic_type=ec2.FlowLogTrafficType.ALL
                )
            } or None
        )

        # The ALB ingress controller discovers subnets through these tags
        for subnet in self.vpc.public_subnets:
            Tags.of(subnet).add("kubernetes.io/role/elb", "1")
        for subnet in self.vpc.private_subnets:
            Tags.of(subnet).add("kubernetes.io/role/internal-elb", "1")

        # S3 gateway endpoint keeps KfDef and artifact traffic off the NAT
        self.vpc.add_gateway_endpoint(
            "S3GatewayEndpoint",
            service=ec2.GatewayVpcEndpointAwsService.S3,
            subnets=[ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS)]
        )

        if not network_config.enable_flow_logs:
            NagSuppressions.add_resource_suppressions(
                self.vpc,
                [
                    {
                        "id": "AwsSolutions-VPC7",
                        "reason": "VPC Flow Logs not required for this environment"
                    }
                ]
            )

        self.vpc_id = self.vpc.vpc_id
