import os

from aws_cdk import (
    Stack,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_logs as logs,
    Duration,
    Token,
    CfnOutput
)
from constructs import Construct

from config.deployment_config import DeploymentConfiguration, RetentionPolicy
from components.access_policy import AccessPolicy
from components.database import DatabaseResource
from components.environment import ElasticBeanstalkApplication, compose_environment_settings
from components.initializer import ResourceInitializer
from components.network import NetworkTopology

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
INITIALIZER_CODE_DIR = os.path.join(ROOT_DIR, "lambda", "rds_initializer")
DEPLOYMENT_BUNDLE_DIR = os.path.join(ROOT_DIR, "src", "deployment_zip")


class ElasticBeanstalkStack(Stack):
    """
    Elastic Beanstalk web application in front of an RDS PostgreSQL database.

    Build order: network -> security groups -> database -> database
    initializer -> Elastic Beanstalk application. The application version is
    only created once the initializer has run and the bundle is uploaded.
    """

    def __init__(self, scope: Construct, construct_id: str,
                 config: DeploymentConfiguration,
                 bundle_path: str = DEPLOYMENT_BUNDLE_DIR, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.config = config
        application_name = config.application_name
        database_settings = config.database

        # ====================================================================
        # NETWORK - bucket for flow logs + deployments, VPC
        # ====================================================================
        self.network = NetworkTopology(self, "Network", config=config)

        # ====================================================================
        # SECURITY GROUPS (+ retention of the whole topology)
        # ====================================================================
        self.access_policy = AccessPolicy(
            self, "AccessPolicy",
            network=self.network,
            config=config
        )

        # ====================================================================
        # WEB TIER ROLE + INSTANCE PROFILE
        # ====================================================================
        self.web_tier_role = iam.Role(
            self, f"{application_name}-webtier-role",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AWSElasticBeanstalkWebTier")
            ]
        )
        instance_profile_name = f"{application_name}-EC2WebInstanceProfile"
        instance_profile = iam.CfnInstanceProfile(
            self, instance_profile_name,
            instance_profile_name=instance_profile_name,
            roles=[self.web_tier_role.role_name]
        )

        # ====================================================================
        # DATABASE - RDS PostgreSQL with Secrets Manager credentials
        # ====================================================================
        self.database = DatabaseResource(
            self, "rdsResource",
            network=self.network,
            access_policy=self.access_policy,
            config=config,
            web_tier_role=self.web_tier_role
        )

        # ====================================================================
        # DATABASE INITIALIZER - creates the IAM authenticated web user
        # ====================================================================
        self.initializer = ResourceInitializer(
            self, "MyRdsInit",
            vpc=self.network.vpc,
            config={
                "dbCredentialsName": self.database.credentials_name,
                "dbWebUsername": database_settings.db_web_username,
                "dbName": database_settings.db_name
            },
            fn_code=lambda_.DockerImageCode.from_image_asset(INITIALIZER_CODE_DIR),
            fn_timeout=Duration.minutes(2),
            fn_log_retention=logs.RetentionDays.FIVE_MONTHS
        )
        self.initializer.allow_database_connections(self.database.instance)
        self.initializer.grant_secret_read(self.database.credentials)
        self.initializer.invoke(after=self.database.instance)
        if config.retention_policy is RetentionPolicy.RETAIN:
            # the retained database rule still refers to the function's group
            AccessPolicy.retain(self.initializer.security_group)

        # ====================================================================
        # ELASTIC BEANSTALK
        # ====================================================================
        self.option_settings = compose_environment_settings(
            config,
            vpc_id=self.network.vpc.vpc_id,
            web_subnet_ids=self.network.web_subnet_ids,
            lb_subnet_ids=self.network.public_subnet_ids,
            instance_profile_arn=instance_profile.attr_arn,
            web_security_group_id=self.access_policy.web_security_group.security_group_id,
            lb_security_group_id=self.access_policy.lb_security_group.security_group_id,
            db_hostname=self.database.instance.db_instance_endpoint_address,
            db_port=self.database.instance.db_instance_endpoint_port,
            region=self.region
        )
        self.application = ElasticBeanstalkApplication(
            self, "ElasticBeanstalk",
            config=config,
            bucket=self.network.bucket,
            bundle_path=bundle_path,
            settings=self.option_settings,
            initialized=self.initializer.custom_resource
        )

        # ====================================================================
        # OUTPUTS
        # ====================================================================
        # Shows whether the initializer query succeeded
        CfnOutput(self, "RdsInitFnResponse", value=Token.as_string(self.initializer.response))
        CfnOutput(self, "VPCId", value=self.network.vpc.vpc_id)
        CfnOutput(self, "RDSInstanceEndpoint", value=self.database.instance.db_instance_endpoint_address)
        CfnOutput(self, "RDSSecretARN", value=self.database.credentials.secret_arn)
        CfnOutput(self, "EnvironmentName", value=self.application.environment.ref)
