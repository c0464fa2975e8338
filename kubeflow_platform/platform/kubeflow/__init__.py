from .kubeflow_cluster_construct import KubeflowCluster
