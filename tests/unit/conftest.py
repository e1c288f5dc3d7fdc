import copy
import os

import aws_cdk as core
import aws_cdk.assertions as assertions
import pytest

# boto3 clients are created at import time in the Lambda handlers
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from config.deployment_config import load_configuration  # noqa: E402
from stacks.elastic_beanstalk_stack import ElasticBeanstalkStack  # noqa: E402

CERTIFICATE_ARN = "arn:aws:acm:us-east-1:123456789012:certificate/0f5e7a2c-demo"

BASE_DOCUMENT = {
    "applicationName": "demo",
    "instanceType": "t3.small",
    "vpcName": "MainVPC",
    "vpcCidr": "10.0.0.0/16",
    "loadbalancerInboundCIDR": "0.0.0.0/0",
    "loadbalancerOutboundCIDR": "10.0.0.0/16",
    "webserverOutboundCIDR": "0.0.0.0/0",
    "zipFileName": "app.zip",
    "solutionStackName": "64bit Amazon Linux 2023 v4.3.0 running Python 3.11",
    "managedActionsEnabled": "true",
    "updateLevel": "minor",
    "preferredUpdateStartTime": "Sun:02:00",
    "streamLogs": "true",
    "deleteLogsOnTerminate": "false",
    "logRetentionDays": "7",
    "loadBalancerType": "application",
    "lbHTTPSEnabled": False,
    "lbHTTPSCertificateArn": "",
    "databaseSettings": {
        "dbName": "demodb",
        "dbAdminUsername": "dbadmin",
        "dbWebUsername": "dbwebuser",
        "dbStorageGB": 20,
        "dbMaxStorageGiB": 100,
        "dbMultiAZ": False,
        "dbBackupRetentionDays": 7,
        "dbDeleteAutomatedBackups": True,
        "dbPreferredBackupWindow": "01:00-01:30",
        "dbCloudwatchLogsExports": ["postgresql"],
        "dbIamAuthentication": False,
        "dbInstanceType": "t3.micro",
        "dbRetentionPolicy": "destroy",
    },
}


def make_document(database=None, **overrides):
    document = copy.deepcopy(BASE_DOCUMENT)
    document.update(overrides)
    document["databaseSettings"].update(database or {})
    return document


def build_stack(document):
    app = core.App()
    stack = ElasticBeanstalkStack(
        app, "ElasticBeanstalkCdkStack", config=load_configuration(document)
    )
    return stack, assertions.Template.from_stack(stack)


@pytest.fixture
def document():
    return make_document()


@pytest.fixture(scope="module")
def default_stack():
    return build_stack(make_document())


@pytest.fixture(scope="module")
def https_stack():
    return build_stack(make_document(lbHTTPSEnabled=True, lbHTTPSCertificateArn=CERTIFICATE_ARN))


@pytest.fixture(scope="module")
def retained_stack():
    return build_stack(make_document(database={"dbRetentionPolicy": "retain"}))


@pytest.fixture(scope="module")
def iam_stack():
    return build_stack(make_document(database={"dbIamAuthentication": True}))
