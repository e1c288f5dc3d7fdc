"""
Elastic Beanstalk application, version and environment.

Option settings reference:
https://docs.aws.amazon.com/elasticbeanstalk/latest/dg/command-options-general.html
"""

from typing import Iterable, Iterator, List, Optional, Tuple

from aws_cdk import (
    aws_elasticbeanstalk as elasticbeanstalk,
    aws_s3 as s3,
    aws_s3_deployment as s3deploy,
)
from constructs import Construct, IConstruct

from config.deployment_config import DeploymentConfiguration

ENVIRONMENT_NAMESPACE = "aws:elasticbeanstalk:application:environment"
MANAGED_UPDATES_ROLE = "AWSServiceRoleForElasticBeanstalkManagedUpdates"

Setting = Tuple[str, str, str]


def _render(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class OptionSettings:
    """Ordered (namespace, option, value) triples. Adding returns a new collection."""

    def __init__(self, settings: Iterable[Setting] = ()) -> None:
        self._settings: Tuple[Setting, ...] = tuple(settings)

    def add(self, namespace: str, option: str, value) -> "OptionSettings":
        return OptionSettings(self._settings + ((namespace, option, _render(value)),))

    def extend(self, other: Iterable[Setting]) -> "OptionSettings":
        return OptionSettings(self._settings + tuple(other))

    def value_of(self, namespace: str, option: str) -> Optional[str]:
        for setting_namespace, setting_option, value in self._settings:
            if (setting_namespace, setting_option) == (namespace, option):
                return value
        return None

    def to_properties(self) -> List[elasticbeanstalk.CfnEnvironment.OptionSettingProperty]:
        return [
            elasticbeanstalk.CfnEnvironment.OptionSettingProperty(
                namespace=namespace, option_name=option, value=value
            )
            for namespace, option, value in self._settings
        ]

    def __iter__(self) -> Iterator[Setting]:
        return iter(self._settings)

    def __len__(self) -> int:
        return len(self._settings)

    def __eq__(self, other) -> bool:
        return isinstance(other, OptionSettings) and self._settings == other._settings

    def __repr__(self) -> str:
        return f"OptionSettings({list(self._settings)!r})"


def compose_environment_settings(config: DeploymentConfiguration, *,
                                 vpc_id: str, web_subnet_ids: str, lb_subnet_ids: str,
                                 instance_profile_arn: str,
                                 web_security_group_id: str, lb_security_group_id: str,
                                 db_hostname: str, db_port: str, region: str) -> OptionSettings:
    """
    Platform settings plus the variables the application reads to find the
    database. HTTPS listener settings are appended when HTTPS is enabled.
    """
    settings = (
        OptionSettings()
        .add("aws:elasticbeanstalk:environment", "LoadBalancerType", config.load_balancer_type)
        .add("aws:autoscaling:launchconfiguration", "InstanceType", config.instance_type)
        .add("aws:autoscaling:launchconfiguration", "IamInstanceProfile", instance_profile_arn)
        .add("aws:autoscaling:launchconfiguration", "SecurityGroups", web_security_group_id)
        .add("aws:ec2:vpc", "VPCId", vpc_id)
        .add("aws:ec2:vpc", "Subnets", web_subnet_ids)
        .add("aws:ec2:vpc", "ELBSubnets", lb_subnet_ids)
        .add("aws:elbv2:loadbalancer", "SecurityGroups", lb_security_group_id)
        .add("aws:elasticbeanstalk:managedactions", "ServiceRoleForManagedUpdates", MANAGED_UPDATES_ROLE)
        .add("aws:elasticbeanstalk:managedactions", "ManagedActionsEnabled", config.managed_actions_enabled)
        .add("aws:elasticbeanstalk:managedactions:platformupdate", "UpdateLevel", config.update_level)
        .add("aws:elasticbeanstalk:managedactions", "PreferredStartTime", config.preferred_update_start_time)
        .add("aws:elasticbeanstalk:cloudwatch:logs", "StreamLogs", config.stream_logs)
        .add("aws:elasticbeanstalk:cloudwatch:logs", "DeleteOnTerminate", config.delete_logs_on_terminate)
        .add("aws:elasticbeanstalk:cloudwatch:logs", "RetentionInDays", config.log_retention_days)
        .add("aws:elasticbeanstalk:hostmanager", "LogPublicationControl", True)
        .add(ENVIRONMENT_NAMESPACE, "RDS_HOSTNAME", db_hostname)
        .add(ENVIRONMENT_NAMESPACE, "RDS_PORT", db_port)
        .add(ENVIRONMENT_NAMESPACE, "RDS_USERNAME", config.database.db_web_username)
        .add(ENVIRONMENT_NAMESPACE, "RDS_DATABASE", config.database.db_name)
        .add(ENVIRONMENT_NAMESPACE, "REGION", region)
    )
    if config.lb_https_enabled:
        settings = settings.extend(https_listener_settings(config))
    return settings


def https_listener_settings(config: DeploymentConfiguration) -> OptionSettings:
    # Swap the default HTTP listener for an HTTPS one on 443
    return (
        OptionSettings()
        .add("aws:elbv2:listener:default", "ListenerEnabled", False)
        .add("aws:elbv2:listener:443", "ListenerEnabled", True)
        .add("aws:elbv2:listener:443", "SSLCertificateArns", config.lb_https_certificate_arn)
        .add("aws:elbv2:listener:443", "SSLPolicy", config.ssl_policy)
        .add("aws:elbv2:listener:443", "Protocol", "HTTPS")
    )


class ElasticBeanstalkApplication(Construct):
    """
    Uploads the deployment bundle and creates the application, its version and
    the environment.

    The version waits for ``initialized`` (the database initializer) and for the
    bundle upload; the environment waits for the version.
    """

    def __init__(self, scope: Construct, construct_id: str, *,
                 config: DeploymentConfiguration,
                 bucket: s3.IBucket,
                 bundle_path: str,
                 settings: OptionSettings,
                 initialized: IConstruct,
                 **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        application_name = config.application_name
        self.settings = settings

        # Upload the zipped application to the deployment bucket
        self.bundle_upload = s3deploy.BucketDeployment(
            self, "DeployZippedApplication",
            sources=[s3deploy.Source.asset(bundle_path)],
            destination_bucket=bucket
        )

        self.application = elasticbeanstalk.CfnApplication(
            self, "Application",
            application_name=application_name
        )

        self.version = elasticbeanstalk.CfnApplicationVersion(
            self, "EBAppVersion",
            application_name=application_name,
            source_bundle=elasticbeanstalk.CfnApplicationVersion.SourceBundleProperty(
                s3_bucket=bucket.bucket_name,
                s3_key=config.zip_file_name
            )
        )
        self.version.node.add_dependency(initialized)
        self.version.node.add_dependency(self.bundle_upload)
        self.version.add_dependency(self.application)

        self.environment = elasticbeanstalk.CfnEnvironment(
            self, "EBEnvironment",
            environment_name=f"{application_name}-env",
            application_name=application_name,
            solution_stack_name=config.solution_stack_name,
            version_label=self.version.ref,
            option_settings=settings.to_properties()
        )
        self.environment.add_dependency(self.application)
