from .utilities import ToolLayersStack, KubectlLayer, KfctlLayer
from .console import EksConsole
from .kubeflow import KubeflowCluster
