import json

from aws_cdk import (
    Duration,
    RemovalPolicy,
    Stack,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_logs as logs,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
    custom_resources as cr,
)
from constructs import Construct

from config.deployment_config import DeploymentConfiguration, RetentionPolicy
from components.access_policy import AccessPolicy
from components.network import NetworkTopology
from secure_templates.rds import SecureDatabaseInstance

RESOURCE_ID_PATH = "DBInstances.0.DbiResourceId"

# CloudWatch only accepts these retention periods
_LOG_RETENTION = [
    (1, logs.RetentionDays.ONE_DAY),
    (3, logs.RetentionDays.THREE_DAYS),
    (5, logs.RetentionDays.FIVE_DAYS),
    (7, logs.RetentionDays.ONE_WEEK),
    (14, logs.RetentionDays.TWO_WEEKS),
    (30, logs.RetentionDays.ONE_MONTH),
    (60, logs.RetentionDays.TWO_MONTHS),
    (90, logs.RetentionDays.THREE_MONTHS),
    (120, logs.RetentionDays.FOUR_MONTHS),
    (150, logs.RetentionDays.FIVE_MONTHS),
    (180, logs.RetentionDays.SIX_MONTHS),
    (365, logs.RetentionDays.ONE_YEAR),
    (400, logs.RetentionDays.THIRTEEN_MONTHS),
    (545, logs.RetentionDays.EIGHTEEN_MONTHS),
    (731, logs.RetentionDays.TWO_YEARS),
    (1096, logs.RetentionDays.THREE_YEARS),
    (1827, logs.RetentionDays.FIVE_YEARS),
    (3653, logs.RetentionDays.TEN_YEARS),
]


def log_retention_for(days: int) -> logs.RetentionDays:
    """Smallest CloudWatch retention period that keeps logs for ``days``."""
    for limit, retention in _LOG_RETENTION:
        if days <= limit:
            return retention
    return logs.RetentionDays.INFINITE


def db_user_arn(partition: str, region: str, account: str,
                resource_id: str, username: str) -> str:
    """ARN that ``rds-db:connect`` has to be granted on for IAM authentication."""
    return f"arn:{partition}:rds-db:{region}:{account}:dbuser:{resource_id}/{username}"


class DatabaseResource(Construct):
    """
    PostgreSQL instance in the isolated subnets plus its admin credentials.

    The admin account is only used to create the web user the application
    connects with. Its credentials stay in Secrets Manager for emergencies and
    are not rotated.

    With IAM authentication enabled the web tier role is granted
    ``rds-db:connect`` in two phases:
    1. the instance is created, its DbiResourceId is not known yet
    2. a custom resource calls DescribeDBInstances once the instance exists,
       and the grant is built from the resolved id
    """

    def __init__(self, scope: Construct, construct_id: str,
                 network: NetworkTopology, access_policy: AccessPolicy,
                 config: DeploymentConfiguration, web_tier_role: iam.IRole,
                 **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        settings = config.database
        application_name = config.application_name
        retention = config.retention_policy
        self.web_username = settings.db_web_username
        self.resource_id = None

        # ====================================================================
        # Admin credentials (generated once, never rotated)
        # ====================================================================
        self.credentials_name = f"{application_name}-database-credentials"
        self.credentials = secretsmanager.Secret(
            self, f"{application_name}-DBCredentialsSecret",
            secret_name=self.credentials_name,
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": settings.db_admin_username}),
                generate_string_key="password",
                exclude_punctuation=True,
                include_space=False
            ),
            # A retained instance keeps its admin credentials. Secrets cannot be snapshotted
            removal_policy=(RemovalPolicy.RETAIN if retention is RetentionPolicy.RETAIN
                            else RemovalPolicy.DESTROY)
        )

        # ====================================================================
        # Subnet group on the isolated subnets
        # ====================================================================
        subnet_group = rds.SubnetGroup(
            self, "rds-subnet-group",
            vpc=network.vpc,
            description="subnetgroup-db",
            vpc_subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_ISOLATED
            ),
            # Subnet groups cannot be snapshotted
            removal_policy=(RemovalPolicy.RETAIN if retention is RetentionPolicy.RETAIN
                            else RemovalPolicy.DESTROY)
        )

        # ====================================================================
        # SECURE RDS INSTANCE
        # ====================================================================
        self.instance = SecureDatabaseInstance(
            self, f"{application_name}-instance",
            engine=rds.DatabaseInstanceEngine.postgres(
                version=rds.PostgresEngineVersion.VER_14
            ),
            instance_type=ec2.InstanceType(settings.db_instance_type),
            instance_identifier=application_name,
            vpc=network.vpc,
            subnet_group=subnet_group,
            security_groups=[access_policy.db_security_group],
            credentials=rds.Credentials.from_secret(self.credentials),
            database_name=settings.db_name,
            allocated_storage=settings.db_storage_gb,
            max_allocated_storage=settings.db_max_storage_gib,
            multi_az=settings.db_multi_az,
            backup_retention=Duration.days(settings.db_backup_retention_days),
            delete_automated_backups=settings.db_delete_automated_backups,
            preferred_backup_window=settings.db_preferred_backup_window,
            cloudwatch_logs_exports=list(settings.db_cloudwatch_logs_exports) or None,
            cloudwatch_logs_retention=log_retention_for(settings.db_backup_retention_days),
            iam_authentication=settings.db_iam_authentication,
            removal_policy=retention.removal_policy
        )

        if settings.db_iam_authentication:
            self.grant_iam_connect(web_tier_role)

    def grant_iam_connect(self, role: iam.IRole) -> None:
        """
        Resolve the instance's DbiResourceId and let ``role`` connect as the web user.

        ``DatabaseInstance.grant_connect`` builds the ARN from the instance
        identifier, but IAM database authentication needs the resource id.
        """
        stack = Stack.of(self)

        lookup_role = iam.Role(
            self, "AwsCustomResourceRoleInfra",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                )
            ]
        )
        lookup = cr.AwsCustomResource(
            self, "RdsInstanceResourceId",
            on_create=cr.AwsSdkCall(
                service="RDS",
                action="describeDBInstances",
                parameters={
                    "DBInstanceIdentifier": self.instance.instance_identifier
                },
                physical_resource_id=cr.PhysicalResourceId.from_response(RESOURCE_ID_PATH),
                output_paths=[RESOURCE_ID_PATH]
            ),
            policy=cr.AwsCustomResourcePolicy.from_sdk_calls(
                resources=cr.AwsCustomResourcePolicy.ANY_RESOURCE
            ),
            role=lookup_role
        )
        # Phase 2 only starts once the instance is durable
        lookup.node.add_dependency(self.instance)

        self.resource_id = lookup.get_response_field(RESOURCE_ID_PATH)
        role.add_to_principal_policy(iam.PolicyStatement(
            actions=["rds-db:connect"],
            resources=[db_user_arn(stack.partition, stack.region, stack.account,
                                   self.resource_id, self.web_username)]
        ))
