"""
Custom resource that runs a one-shot Lambda function during deployment.

The function is invoked synchronously through an SDK call made by an
AwsCustomResource, and its Payload becomes a resolvable attribute of the
stack. Used to create the IAM authenticated web user in the database.
"""

import json
from enum import Enum
from typing import Mapping, Sequence

from aws_cdk import (
    Duration,
    RemovalPolicy,
    Stack,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_logs as logs,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
    custom_resources as cr,
)
from constructs import Construct, IConstruct

from components.access_policy import POSTGRES_PORT


class InitializerState(Enum):
    PENDING = "pending"
    INVOKED = "invoked"


class BootstrapOrderingError(RuntimeError):
    """Raised when the initializer is invoked before it can reach the database."""


def build_invocation_payload(config: Mapping[str, str]) -> str:
    return json.dumps({"params": {"config": dict(config)}})


class ResourceInitializer(Construct):
    """
    One-shot Lambda function plus the custom resource that calls it.

    Starts PENDING. ``invoke`` moves it to INVOKED and is refused until the
    function can reach the database port and read the credentials secret,
    the function would only fail at deploy time otherwise.
    """

    def __init__(self, scope: Construct, construct_id: str, *,
                 vpc: ec2.IVpc,
                 config: Mapping[str, str],
                 fn_code: lambda_.DockerImageCode,
                 fn_timeout: Duration,
                 fn_log_retention: logs.RetentionDays,
                 fn_security_groups: Sequence[ec2.ISecurityGroup] = (),
                 fn_memory_size: int = 128,
                 timeout: Duration = Duration.minutes(10),
                 **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        stack = Stack.of(self)
        self.state = InitializerState.PENDING
        self.payload = build_invocation_payload(config)
        self.timeout = timeout
        self.custom_resource = None
        self.response = None
        self._can_connect = False
        self._can_read_secret = False
        self._grants = []

        self.security_group = ec2.SecurityGroup(
            self, "ResourceInitializerFnSg",
            security_group_name=f"{construct_id}ResourceInitializerFnSg",
            vpc=vpc,
            allow_all_outbound=True
        )

        log_group = logs.LogGroup(
            self, "ResourceInitializerFnLogs",
            retention=fn_log_retention,
            removal_policy=RemovalPolicy.DESTROY
        )

        self.function = lambda_.DockerImageFunction(
            self, "ResourceInitializerFn",
            function_name=f"{construct_id}-ResInit{stack.stack_name}",
            code=fn_code,
            memory_size=fn_memory_size,
            timeout=fn_timeout,
            vpc=vpc,
            security_groups=[self.security_group, *fn_security_groups],
            log_group=log_group
        )

    def allow_database_connections(self, instance: rds.IDatabaseInstance) -> None:
        instance.connections.allow_from(self.function, ec2.Port.tcp(POSTGRES_PORT))
        # the ingress rules are created below the database's security groups
        self._grants.extend(instance.connections.security_groups)
        self._can_connect = True

    def grant_secret_read(self, secret: secretsmanager.ISecret) -> None:
        secret.grant_read(self.function)
        # covers the target attachment, which writes host and port into the secret
        self._grants.append(secret)
        self._can_read_secret = True

    def invoke(self, after: IConstruct) -> str:
        """
        Create the custom resource calling the function once ``after`` and the
        granted database and secret access exist.

        Returns the function's response payload as a token.

        Raises:
            BootstrapOrderingError: already invoked, or a required grant is missing
        """
        if self.state is not InitializerState.PENDING:
            raise BootstrapOrderingError(f"{self.node.path} has already been invoked")

        missing = []
        if not self._can_connect:
            missing.append("network access to the database")
        if not self._can_read_secret:
            missing.append("read access to the credentials secret")
        if missing:
            raise BootstrapOrderingError(
                f"{self.node.path} cannot be invoked without " + " and ".join(missing)
            )

        sdk_call = cr.AwsSdkCall(
            service="Lambda",
            action="invoke",
            parameters={
                "FunctionName": self.function.function_name,
                "Payload": self.payload
            },
            physical_resource_id=cr.PhysicalResourceId.of(self.function.function_name)
        )

        custom_resource_role = iam.Role(
            self, "AwsCustomResourceRoleInit",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                )
            ]
        )
        custom_resource_role.add_to_policy(iam.PolicyStatement(
            resources=[self.function.function_arn],
            actions=["lambda:InvokeFunction"]
        ))

        # onCreate falls back to onUpdate, so the call also runs on first deploy
        self.custom_resource = cr.AwsCustomResource(
            self, "AwsCustomResourceInit",
            policy=cr.AwsCustomResourcePolicy.from_sdk_calls(
                resources=cr.AwsCustomResourcePolicy.ANY_RESOURCE
            ),
            on_update=sdk_call,
            timeout=self.timeout,
            role=custom_resource_role
        )
        self.custom_resource.node.add_dependency(after, *self._grants)

        self.response = self.custom_resource.get_response_field("Payload")
        self.state = InitializerState.INVOKED
        return self.response
