from .eks_cluster_stack import EksClusterStack
