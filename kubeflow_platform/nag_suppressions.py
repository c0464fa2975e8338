from cdk_nag import NagSuppressions


def add_nag_suppressions(stacks):
    """
    Add suppressions for cdk-nag findings.

    VpcStack suppresses AwsSolutions-VPC7 itself, and only when flow logs
    are off, so the network stack needs nothing here.
    """
    eks_stack = next((stack for stack in stacks if stack.stack_name.endswith('EksClusterStack')), None)
    if eks_stack:
        NagSuppressions.add_stack_suppressions(
            eks_stack,
            [
                {
                    "id": "AwsSolutions-EKS1",
                    "reason": "Public endpoint is required so the kfctl provisioner can reach the API server"
                },
                {
                    "id": "AwsSolutions-EKS2",
                    "reason": "Control plane logging is enabled in production but disabled in development for cost reasons"
                }
            ]
        )

        # Suppress IAM findings for managed policies
        NagSuppressions.add_stack_suppressions(
            eks_stack,
            [
                {
                    "id": "AwsSolutions-IAM4",
                    "reason": "AWS managed policies are required for EKS functionality"
                },
                {
                    "id": "AwsSolutions-IAM5",
                    "reason": "ALB ingress controller and kfctl need wildcard resources"
                }
            ]
        )

        # Console instance
        NagSuppressions.add_stack_suppressions(
            eks_stack,
            [
                {
                    "id": "AwsSolutions-EC28",
                    "reason": "Detailed monitoring is not required for the admin console"
                },
                {
                    "id": "AwsSolutions-EC29",
                    "reason": "Console instance is disposable and not in an ASG"
                }
            ]
        )

        # Suppress Lambda findings
        NagSuppressions.add_stack_suppressions(
            eks_stack,
            [
                {
                    "id": "AwsSolutions-L1",
                    "reason": "Lambda runtime is managed by CDK"
                }
            ]
        )

        # Suppress Step Functions findings
        NagSuppressions.add_stack_suppressions(
            eks_stack,
            [
                {
                    "id": "AwsSolutions-SF1",
                    "reason": "Step Functions logging is managed by CDK"
                },
                {
                    "id": "AwsSolutions-SF2",
                    "reason": "X-Ray tracing is not required for CDK-generated Step Functions"
                }
            ]
        )
