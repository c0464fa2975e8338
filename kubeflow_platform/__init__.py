from .infrastructure import VpcStack, EksClusterStack, ClusterBucket, make_bucket_name
from .platform import ToolLayersStack, KubectlLayer, KfctlLayer, EksConsole, KubeflowCluster
from .config import EnvironmentConfig, NetworkConfig, NodeGroupConfig, EksConfig, KubeflowConfig, ConsoleConfig
