from typing import Sequence

from aws_cdk import (
    Stack,
    RemovalPolicy,
    aws_ec2 as ec2,
    aws_s3 as s3,
)
from constructs import Construct

from config.deployment_config import DeploymentConfiguration, RetentionPolicy

PRIVATE_WITH_NAT = "private-with-nat"
PRIVATE_ISOLATED = "private-isolated"
PUBLIC = "public"


def comma_separated_subnet_ids(subnets: Sequence[ec2.ISubnet]) -> str:
    """Join subnet ids in the order the VPC returned them."""
    return ",".join(subnet.subnet_id for subnet in subnets)


class NetworkTopology(Construct):
    """
    VPC with three subnet roles spread across two AZs:
    1. Private subnet routed through the NAT gateway for the web instances
    2. Isolated private subnet (no NAT) for the database
    3. Public subnet with Internet Gateway + NAT gateway for the load balancer

    VPC flow logs land in the encrypted deployment bucket, which therefore
    has to exist before the VPC.
    """

    def __init__(self, scope: Construct, construct_id: str,
                 config: DeploymentConfiguration, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        stack = Stack.of(self)
        retain = config.retention_policy is RetentionPolicy.RETAIN

        # ====================================================================
        # Encrypted bucket for deployments, server access logs and flow logs
        # Elastic Beanstalk expects the elasticbeanstalk-<region>-<account> name
        # ====================================================================
        self.bucket = s3.Bucket(
            self, "EBEncryptedBucket",
            bucket_name=f"elasticbeanstalk-{stack.region}-{stack.account}",
            encryption=s3.BucketEncryption.S3_MANAGED,
            server_access_logs_prefix="server_access_logs",
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            removal_policy=RemovalPolicy.RETAIN if retain else RemovalPolicy.DESTROY,
            auto_delete_objects=not retain
        )

        # ====================================================================
        # VPC
        # ====================================================================
        self.vpc = ec2.Vpc(
            self, config.vpc_name,
            ip_addresses=ec2.IpAddresses.cidr(config.vpc_cidr),
            max_azs=2,
            nat_gateways=1,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name=PRIVATE_WITH_NAT,
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
                ),
                ec2.SubnetConfiguration(
                    name=PRIVATE_ISOLATED,
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED
                ),
                ec2.SubnetConfiguration(
                    name=PUBLIC,
                    subnet_type=ec2.SubnetType.PUBLIC
                )
            ],
            flow_logs={
                "s3": ec2.FlowLogOptions(
                    destination=ec2.FlowLogDestination.to_s3(self.bucket, "vpc-flow-logs"),
                    traffic_type=ec2.FlowLogTrafficType.ALL
                )
            }
        )
        self.vpc.node.add_dependency(self.bucket)

    @property
    def public_subnets(self) -> Sequence[ec2.ISubnet]:
        return self.vpc.select_subnets(subnet_type=ec2.SubnetType.PUBLIC).subnets

    @property
    def web_subnets(self) -> Sequence[ec2.ISubnet]:
        return self.vpc.select_subnets(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS).subnets

    @property
    def public_subnet_ids(self) -> str:
        return comma_separated_subnet_ids(self.public_subnets)

    @property
    def web_subnet_ids(self) -> str:
        return comma_separated_subnet_ids(self.web_subnets)
