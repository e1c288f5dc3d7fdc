import pytest

from config.deployment_config import load_configuration
from components.environment import (
    ENVIRONMENT_NAMESPACE,
    OptionSettings,
    compose_environment_settings,
    https_listener_settings,
)

from conftest import CERTIFICATE_ARN, make_document

ENDPOINTS = dict(
    vpc_id="vpc-1",
    web_subnet_ids="subnet-w1,subnet-w2",
    lb_subnet_ids="subnet-p1,subnet-p2",
    instance_profile_arn="arn:aws:iam::123456789012:instance-profile/demo",
    web_security_group_id="sg-web",
    lb_security_group_id="sg-lb",
    db_hostname="demo.abc.eu-west-1.rds.amazonaws.com",
    db_port="5432",
    region="eu-west-1",
)


def _settings(**overrides):
    return compose_environment_settings(load_configuration(make_document(**overrides)), **ENDPOINTS)


def test_adding_returns_a_new_collection():
    empty = OptionSettings()
    one = empty.add("ns", "Option", "value")
    two = one.extend([("ns", "Other", "x")])

    assert len(empty) == 0
    assert list(one) == [("ns", "Option", "value")]
    assert list(two) == [("ns", "Option", "value"), ("ns", "Other", "x")]


def test_values_are_rendered_as_strings():
    settings = OptionSettings().add("ns", "Enabled", True).add("ns", "Days", 7)

    assert settings.value_of("ns", "Enabled") == "true"
    assert settings.value_of("ns", "Days") == "7"
    assert settings.value_of("ns", "Missing") is None


def test_base_settings_without_https():
    settings = _settings()

    assert len(settings) == 21
    assert not any(namespace.startswith("aws:elbv2:listener") for namespace, _, _ in settings)
    assert settings.value_of("aws:ec2:vpc", "Subnets") == "subnet-w1,subnet-w2"
    assert settings.value_of("aws:ec2:vpc", "ELBSubnets") == "subnet-p1,subnet-p2"
    assert settings.value_of("aws:elasticbeanstalk:managedactions", "ManagedActionsEnabled") == "true"
    assert settings.value_of("aws:elasticbeanstalk:cloudwatch:logs", "RetentionInDays") == "7"
    assert settings.value_of("aws:elasticbeanstalk:hostmanager", "LogPublicationControl") == "true"


def test_database_variables_are_injected():
    settings = _settings()
    variables = {option: value for namespace, option, value in settings
                 if namespace == ENVIRONMENT_NAMESPACE}

    assert variables == {
        "RDS_HOSTNAME": "demo.abc.eu-west-1.rds.amazonaws.com",
        "RDS_PORT": "5432",
        "RDS_USERNAME": "dbwebuser",
        "RDS_DATABASE": "demodb",
        "REGION": "eu-west-1",
    }


def test_https_settings_are_appended():
    settings = _settings(lbHTTPSEnabled=True, lbHTTPSCertificateArn=CERTIFICATE_ARN)
    base = _settings()

    assert len(settings) == len(base) + 5
    assert list(settings)[:len(base)] == list(base)
    assert list(settings)[len(base):] == [
        ("aws:elbv2:listener:default", "ListenerEnabled", "false"),
        ("aws:elbv2:listener:443", "ListenerEnabled", "true"),
        ("aws:elbv2:listener:443", "SSLCertificateArns", CERTIFICATE_ARN),
        ("aws:elbv2:listener:443", "SSLPolicy", "ELBSecurityPolicy-FS-1-2-Res-2020-10"),
        ("aws:elbv2:listener:443", "Protocol", "HTTPS"),
    ]


def test_https_policy_override():
    config = load_configuration(make_document(
        lbHTTPSEnabled=True, lbHTTPSCertificateArn=CERTIFICATE_ARN, lbSSLPolicy="CustomPolicy"
    ))

    assert https_listener_settings(config).value_of("aws:elbv2:listener:443", "SSLPolicy") == "CustomPolicy"


def test_demo_environment(default_stack):
    stack, template = default_stack

    (environment,) = template.find_resources("AWS::ElasticBeanstalk::Environment").values()
    properties = environment["Properties"]
    assert properties["EnvironmentName"] == "demo-env"
    assert properties["ApplicationName"] == "demo"
    assert len(properties["OptionSettings"]) == 21

    username = [s for s in properties["OptionSettings"] if s["OptionName"] == "RDS_USERNAME"]
    database = [s for s in properties["OptionSettings"] if s["OptionName"] == "RDS_DATABASE"]
    assert username == [{"Namespace": ENVIRONMENT_NAMESPACE, "OptionName": "RDS_USERNAME", "Value": "dbwebuser"}]
    assert database == [{"Namespace": ENVIRONMENT_NAMESPACE, "OptionName": "RDS_DATABASE", "Value": "demodb"}]


def test_https_environment(https_stack):
    stack, template = https_stack

    (environment,) = template.find_resources("AWS::ElasticBeanstalk::Environment").values()
    listener = {
        (s["Namespace"], s["OptionName"]): s["Value"]
        for s in environment["Properties"]["OptionSettings"]
        if s["Namespace"].startswith("aws:elbv2:listener")
    }
    assert listener == {
        ("aws:elbv2:listener:default", "ListenerEnabled"): "false",
        ("aws:elbv2:listener:443", "ListenerEnabled"): "true",
        ("aws:elbv2:listener:443", "SSLCertificateArns"): CERTIFICATE_ARN,
        ("aws:elbv2:listener:443", "SSLPolicy"): "ELBSecurityPolicy-FS-1-2-Res-2020-10",
        ("aws:elbv2:listener:443", "Protocol"): "HTTPS",
    }


def test_version_waits_for_initializer_and_bundle(default_stack):
    stack, template = default_stack
    resources = template.to_json()["Resources"]
    application = stack.application

    version = resources[stack.get_logical_id(application.version)]
    (invocation_id,) = template.find_resources("Custom::AWS").keys()
    (upload_id,) = template.find_resources("Custom::CDKBucketDeployment").keys()

    assert invocation_id in version["DependsOn"]
    assert upload_id in version["DependsOn"]
    assert stack.get_logical_id(application.application) in version["DependsOn"]
    assert version["Properties"]["SourceBundle"]["S3Key"] == "app.zip"


def test_environment_waits_for_version(default_stack):
    stack, template = default_stack
    resources = template.to_json()["Resources"]
    application = stack.application

    environment = resources[stack.get_logical_id(application.environment)]
    assert environment["Properties"]["VersionLabel"] == {"Ref": stack.get_logical_id(application.version)}


@pytest.mark.parametrize("stack_fixture", ["default_stack", "iam_stack"])
def test_web_tier_instance_profile(stack_fixture, request):
    _, template = request.getfixturevalue(stack_fixture)

    template.has_resource_properties("AWS::IAM::InstanceProfile", {
        "InstanceProfileName": "demo-EC2WebInstanceProfile",
    })
