from datetime import datetime
from typing import Optional

from aws_cdk import (
    Aws,
    aws_s3 as s3,
    RemovalPolicy,
    CfnOutput
)
from constructs import Construct
from cdk_nag import NagSuppressions
from kubeflow_platform.config import KubeflowConfig, constants


def make_bucket_name(bucket_suffix: str, now: Optional[datetime] = None) -> str:
    """
    Build a bucket name of the form <accountId><timestamp><suffix>.

    The account id is a deploy-time token, the timestamp is taken once at synth.
    """
    now = now or datetime.now()
    return Aws.ACCOUNT_ID + now.strftime(constants.BUCKET_TIMESTAMP_FORMAT) + bucket_suffix


def parse_bucket_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Read a pinned bucket timestamp (CDK context `bucket_timestamp`)"""
    if not value:
        return None
    try:
        return datetime.strptime(str(value), constants.BUCKET_TIMESTAMP_FORMAT)
    except ValueError:
        raise ValueError(
            f"bucket_timestamp '{value}' does not match {constants.BUCKET_TIMESTAMP_FORMAT}"
        )


class ClusterBucket(Construct):
    """
    S3 bucket that holds rendered KfDef files for the cluster.

    Lives in the cluster's own stack so a renamed bucket never has to
    travel through a cross-stack export.
    """
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        kubeflow_config: KubeflowConfig,
        timestamp: Optional[datetime] = None,
        **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.bucket = s3.Bucket(
            self,
            "clusterBucket",
            bucket_name=make_bucket_name(kubeflow_config.bucket_suffix, now=timestamp),
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            encryption=s3.BucketEncryption.S3_MANAGED,
            enforce_ssl=True,
            versioned=True,
            removal_policy=RemovalPolicy.RETAIN
        )

        NagSuppressions.add_resource_suppressions(
            self.bucket,
            [
                {
                    "id": "AwsSolutions-S1",
                    "reason": "Bucket only stores KfDef files written by the provisioner; access logs not required"
                }
            ]
        )

        CfnOutput(
            self,
            "ClusterBucketName",
            value=self.bucket.bucket_name,
            description="Bucket holding the rendered Kubeflow KfDef"
        )
