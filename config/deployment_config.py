"""
Deployment configuration loaded from the CDK context.

The ``configuration`` context value (see cdk.json) is parsed into frozen
dataclasses before any construct is created, so that invalid combinations
stop the synthesis up front.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Tuple

from aws_cdk import RemovalPolicy

DEFAULT_SSL_POLICY = "ELBSecurityPolicy-FS-1-2-Res-2020-10"


class ConfigurationError(ValueError):
    """Raised when the deployment configuration cannot be used."""


class RetentionPolicy(Enum):
    DESTROY = "destroy"
    SNAPSHOT = "snapshot"
    RETAIN = "retain"

    @classmethod
    def from_setting(cls, value: str) -> "RetentionPolicy":
        # Anything we don't recognise keeps the data around
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.RETAIN

    @property
    def removal_policy(self) -> RemovalPolicy:
        return {
            RetentionPolicy.DESTROY: RemovalPolicy.DESTROY,
            RetentionPolicy.SNAPSHOT: RemovalPolicy.SNAPSHOT,
            RetentionPolicy.RETAIN: RemovalPolicy.RETAIN,
        }[self]


@dataclass(frozen=True)
class DatabaseSettings:
    db_name: str
    db_admin_username: str
    db_web_username: str
    db_storage_gb: int
    db_max_storage_gib: int
    db_multi_az: bool
    db_backup_retention_days: int
    db_delete_automated_backups: bool
    db_preferred_backup_window: str
    db_iam_authentication: bool
    db_instance_type: str
    db_retention_policy: RetentionPolicy
    db_cloudwatch_logs_exports: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DeploymentConfiguration:
    """
    All user supplied parameters of a deployment.

    Attributes:
        application_name: Elastic Beanstalk application name, also used to
            name the database instance and its credentials secret
        lb_https_enabled: Serve the load balancer over 443 with the given
            certificate instead of plain HTTP on 80
        database: Nested database sizing and retention settings
    """
    application_name: str
    instance_type: str
    vpc_name: str
    vpc_cidr: str
    loadbalancer_inbound_cidr: str
    loadbalancer_outbound_cidr: str
    webserver_outbound_cidr: str
    zip_file_name: str
    solution_stack_name: str
    managed_actions_enabled: bool
    update_level: str
    preferred_update_start_time: str
    stream_logs: bool
    delete_logs_on_terminate: bool
    log_retention_days: int
    load_balancer_type: str
    lb_https_enabled: bool
    lb_https_certificate_arn: str
    database: DatabaseSettings
    lb_ssl_policy: str = ""

    @property
    def retention_policy(self) -> RetentionPolicy:
        return self.database.db_retention_policy

    @property
    def ssl_policy(self) -> str:
        return self.lb_ssl_policy or DEFAULT_SSL_POLICY


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _require(document: Mapping[str, Any], key: str, section: str = "configuration") -> Any:
    if key not in document:
        raise ConfigurationError(f"Missing '{key}' in {section} settings")
    return document[key]


def _load_database_settings(document: Mapping[str, Any]) -> DatabaseSettings:
    if not isinstance(document, Mapping):
        raise ConfigurationError("'databaseSettings' must be a mapping")

    def get(key):
        return _require(document, key, "databaseSettings")

    return DatabaseSettings(
        db_name=str(get("dbName")),
        db_admin_username=str(get("dbAdminUsername")),
        db_web_username=str(get("dbWebUsername")),
        db_storage_gb=int(get("dbStorageGB")),
        db_max_storage_gib=int(get("dbMaxStorageGiB")),
        db_multi_az=_as_bool(get("dbMultiAZ")),
        db_backup_retention_days=int(get("dbBackupRetentionDays")),
        db_delete_automated_backups=_as_bool(get("dbDeleteAutomatedBackups")),
        db_preferred_backup_window=str(get("dbPreferredBackupWindow")),
        db_iam_authentication=_as_bool(get("dbIamAuthentication")),
        db_instance_type=str(get("dbInstanceType")),
        db_retention_policy=RetentionPolicy.from_setting(get("dbRetentionPolicy")),
        db_cloudwatch_logs_exports=tuple(document.get("dbCloudwatchLogsExports", ())),
    )


def load_configuration(document: Mapping[str, Any]) -> DeploymentConfiguration:
    """
    Build a DeploymentConfiguration from the ``configuration`` context value.

    Only the HTTPS/certificate combination is validated here; ranges and
    formats are left to CloudFormation.

    Raises:
        ConfigurationError: document is missing, incomplete, or asks for HTTPS
            without a certificate ARN
    """
    if not isinstance(document, Mapping):
        raise ConfigurationError(
            "No 'configuration' found in the CDK context, add it to cdk.json"
        )

    def get(key):
        return _require(document, key)

    lb_https_enabled = _as_bool(document.get("lbHTTPSEnabled", False))
    certificate_arn = str(document.get("lbHTTPSCertificateArn") or "")
    if lb_https_enabled and not certificate_arn.strip():
        raise ConfigurationError(
            "Please provide a certificate ARN in cdk.json, "
            "or disable HTTPS for testing purposes"
        )

    return DeploymentConfiguration(
        application_name=str(get("applicationName")),
        instance_type=str(get("instanceType")),
        vpc_name=str(get("vpcName")),
        vpc_cidr=str(get("vpcCidr")),
        loadbalancer_inbound_cidr=str(get("loadbalancerInboundCIDR")),
        loadbalancer_outbound_cidr=str(get("loadbalancerOutboundCIDR")),
        webserver_outbound_cidr=str(get("webserverOutboundCIDR")),
        zip_file_name=str(get("zipFileName")),
        solution_stack_name=str(get("solutionStackName")),
        managed_actions_enabled=_as_bool(get("managedActionsEnabled")),
        update_level=str(get("updateLevel")),
        preferred_update_start_time=str(get("preferredUpdateStartTime")),
        stream_logs=_as_bool(get("streamLogs")),
        delete_logs_on_terminate=_as_bool(get("deleteLogsOnTerminate")),
        log_retention_days=int(get("logRetentionDays")),
        load_balancer_type=str(get("loadBalancerType")),
        lb_https_enabled=lb_https_enabled,
        lb_https_certificate_arn=certificate_arn,
        lb_ssl_policy=str(document.get("lbSSLPolicy") or ""),
        database=_load_database_settings(get("databaseSettings")),
    )
