from . import constants
from .environment_config import (
    EnvironmentConfig,
    NetworkConfig,
    NodeGroupConfig,
    EksConfig,
    KubeflowConfig,
    ConsoleConfig,
)
