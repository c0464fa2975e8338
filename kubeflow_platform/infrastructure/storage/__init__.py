from .cluster_bucket import ClusterBucket, make_bucket_name, parse_bucket_timestamp
