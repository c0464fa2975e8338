"""
Environment-specific configuration for the Kubeflow EKS Platform
"""
import re
from dataclasses import dataclass, field
from typing import Optional

from kubeflow_platform.config import constants

_BUCKET_SUFFIX_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")

# Account id (12) + timestamp (14) leaves this much room under the 63 char S3 limit
MAX_BUCKET_SUFFIX_LENGTH = 63 - 12 - 14


@dataclass
class NetworkConfig:
    """Network configuration for the environment"""
    vpc_cidr: str = "10.0.0.0/16"
    max_azs: int = 3
    cidr_mask: int = 24
    nat_gateways: int = 1
    enable_flow_logs: bool = False


@dataclass
class NodeGroupConfig:
    """Sizing of the managed worker node group"""
    instance_type: str = "m5.xlarge"
    min_size: int = 1
    desired_size: int = 6
    max_size: int = 8
    disk_size: int = 100

    def __post_init__(self):
        if min(self.min_size, self.desired_size, self.max_size) < 0:
            raise ValueError("Node group sizes must not be negative")
        if self.desired_size > self.max_size:
            raise ValueError(
                f"desired_size ({self.desired_size}) exceeds max_size ({self.max_size})"
            )
        if self.min_size > self.desired_size:
            raise ValueError(
                f"min_size ({self.min_size}) exceeds desired_size ({self.desired_size})"
            )


@dataclass
class EksConfig:
    cluster_name: str
    version: str = constants.EKS_VERSION
    node_group: NodeGroupConfig = field(default_factory=NodeGroupConfig)
    admin_role_arn: Optional[str] = None


@dataclass
class KubeflowConfig:
    """Where Kubeflow comes from and which tool versions install it"""
    config_url: str = constants.KUBEFLOW_CONFIG_URL
    bucket_suffix: str = constants.CLUSTER_BUCKET_SUFFIX
    kfctl_version: str = constants.KFCTL_VERSION
    kfctl_download_url: str = constants.KFCTL_DOWNLOAD_URL
    kubectl_version: str = constants.KUBECTL_VERSION
    helm_version: str = constants.HELM_VERSION

    def __post_init__(self):
        if len(self.bucket_suffix) > MAX_BUCKET_SUFFIX_LENGTH:
            raise ValueError(
                f"Bucket suffix '{self.bucket_suffix}' is longer than {MAX_BUCKET_SUFFIX_LENGTH} characters"
            )
        if not _BUCKET_SUFFIX_PATTERN.match(self.bucket_suffix):
            raise ValueError(
                f"Bucket suffix '{self.bucket_suffix}' is not a valid lowercase S3 bucket name fragment"
            )


@dataclass
class ConsoleConfig:
    """Admin console instance used to reach the cluster over SSM"""
    enabled: bool = True
    instance_type: str = "t3.medium"


@dataclass
class EnvironmentConfig:
    """Complete environment configuration"""
    environment_name: str
    account: str
    region: str
    network: NetworkConfig
    eks: EksConfig
    kubeflow: KubeflowConfig
    console: ConsoleConfig

    @classmethod
    def development(cls, account: str, region: str) -> 'EnvironmentConfig':
        """Development environment configuration"""
        return cls(
            environment_name="dev",
            account=account,
            region=region,
            network=NetworkConfig(
                nat_gateways=1,
                enable_flow_logs=False
            ),
            eks=EksConfig(
                cluster_name="kubeflow-dev",
                node_group=NodeGroupConfig(
                    instance_type="m5.xlarge",
                    min_size=1,
                    desired_size=6,
                    max_size=8
                )
            ),
            kubeflow=KubeflowConfig(),
            console=ConsoleConfig(enabled=True)
        )

    @classmethod
    def production(cls, account: str, region: str) -> 'EnvironmentConfig':
        """Production environment configuration (NAT per AZ, flow logs on)"""
        return cls(
            environment_name="prod",
            account=account,
            region=region,
            network=NetworkConfig(
                nat_gateways=3,
                enable_flow_logs=True
            ),
            eks=EksConfig(
                cluster_name="kubeflow-prod",
                node_group=NodeGroupConfig(
                    instance_type="m5.2xlarge",
                    min_size=3,
                    desired_size=6,
                    max_size=12,
                    disk_size=200
                )
            ),
            kubeflow=KubeflowConfig(),
            console=ConsoleConfig(enabled=False)
        )

    @classmethod
    def for_environment(cls, name: str, account: str, region: str) -> 'EnvironmentConfig':
        """Look up a named environment, as passed through CDK context"""
        factories = {
            "development": cls.development,
            "dev": cls.development,
            "production": cls.production,
            "prod": cls.production,
        }
        if name not in factories:
            raise ValueError(f"Unknown environment '{name}', expected one of {sorted(factories)}")
        return factories[name](account, region)
