import os
from typing import Dict

from aws_cdk import (
    BundlingOptions,
    DockerImage,
    Stack,
    aws_lambda as lambda_
)
from constructs import Construct
from kubeflow_platform.config import KubeflowConfig, constants

LAYERS_DIR = os.path.join(os.path.dirname(__file__), "layers")

# Runtimes of the kfctl provisioner functions
COMPATIBLE_RUNTIMES = [
    lambda_.Runtime.PYTHON_3_12,
    lambda_.Runtime.PYTHON_3_11,
]


def _bundled_code(layer_name: str, environment: Dict[str, str]) -> lambda_.Code:
    """Package a layer by running layers/<layer_name>/build.sh in the SAM build image"""
    return lambda_.Code.from_asset(
        os.path.join(LAYERS_DIR, layer_name),
        bundling=BundlingOptions(
            image=DockerImage.from_registry(constants.LAYER_BUILD_IMAGE),
            command=["bash", "/asset-input/build.sh"],
            environment=environment
        )
    )


class KubectlLayer(lambda_.LayerVersion):
    """
    Lambda layer with kubectl under /opt/kubectl and helm under /opt/helm.

    No runtime restriction: the eks.Cluster kubectl provider picks its own
    runtime, which moves with aws-cdk-lib releases.
    """
    def __init__(self, scope: Construct, construct_id: str, kubeflow_config: KubeflowConfig, **kwargs) -> None:
        super().__init__(scope, construct_id,
            code=_bundled_code("kubectl", {
                "KUBECTL_VERSION": kubeflow_config.kubectl_version,
                "HELM_VERSION": kubeflow_config.helm_version,
            }),
            description=f"kubectl {kubeflow_config.kubectl_version} and helm {kubeflow_config.helm_version}",
            **kwargs
        )


class KfctlLayer(lambda_.LayerVersion):
    """
    Lambda layer with kfctl under /opt/kfctl
    """
    def __init__(self, scope: Construct, construct_id: str, kubeflow_config: KubeflowConfig, **kwargs) -> None:
        super().__init__(scope, construct_id,
            code=_bundled_code("kfctl", {
                "KFCTL_DOWNLOAD_URL": kubeflow_config.kfctl_download_url,
            }),
            compatible_runtimes=COMPATIBLE_RUNTIMES,
            description=f"kfctl {kubeflow_config.kfctl_version}",
            **kwargs
        )


class ToolLayersStack(Stack):
    """
    Creates the Lambda layers that carry the kubectl and kfctl binaries
    """
    def __init__(self, scope: Construct, construct_id: str, kubeflow_config: KubeflowConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.kubectl_layer = KubectlLayer(self, "KubectlLambdaLayer", kubeflow_config=kubeflow_config)
        self.kfctl_layer = KfctlLayer(self, "KfctlLambdaLayer", kubeflow_config=kubeflow_config)

    @property
    def layers(self):
        """Layers in the order the kfctl provisioner mounts them"""
        return [self.kubectl_layer, self.kfctl_layer]
