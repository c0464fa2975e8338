from .network import VpcStack
from .compute import EksClusterStack
from .storage import ClusterBucket, make_bucket_name, parse_bucket_timestamp
