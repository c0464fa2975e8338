"""
Constants used throughout the Kubeflow EKS Platform
"""

# EKS Configuration
EKS_VERSION = "1.32"
KUBEFLOW_NAMESPACE = "kubeflow"
MASTERS_GROUP = "system:masters"

# Kubeflow Configuration
KUBEFLOW_CONFIG_URL = "https://raw.githubusercontent.com/kubeflow/manifests/v0.7-branch/kfdef/kfctl_aws.0.7.0.yaml"
KFCTL_VERSION = "v0.7.0"
KFCTL_DOWNLOAD_URL = "https://github.com/kubeflow/kubeflow/releases/download/v0.7.0/kfctl_v0.7.0_linux.tar.gz"
CLUSTER_BUCKET_SUFFIX = "kubeflow-demo"

# Tool versions bundled into Lambda layers
KUBECTL_VERSION = "v1.32.0"
HELM_VERSION = "v3.16.3"
LAYER_BUILD_IMAGE = "public.ecr.aws/sam/build-python3.12:latest"

# Layer mount points under /opt
KUBECTL_LAYER_PATH = "/opt/kubectl"
HELM_LAYER_PATH = "/opt/helm"
KFCTL_LAYER_PATH = "/opt/kfctl"

# Bucket name timestamp, fixed at synth time
BUCKET_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
