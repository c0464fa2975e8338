import os
import pytest
from unittest.mock import patch
from aws_cdk import App

# Layer assets are built in Docker; synth tests only need the source hashed
SKIP_BUNDLING_CONTEXT = {"aws:cdk:bundling-stacks": []}


@pytest.fixture(scope="function", autouse=True)
def mock_environment():
    """Mock AWS environment variables for all tests"""
    with patch.dict(os.environ, {
        "CDK_DEFAULT_ACCOUNT": "123456789012",
        "CDK_DEFAULT_REGION": "us-west-2"
    }):
        yield


@pytest.fixture
def cdk_app():
    return App(context=SKIP_BUNDLING_CONTEXT)
