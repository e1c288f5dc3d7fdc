from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Tuple, Union

import jsii
from aws_cdk import (
    Aspects,
    CfnResource,
    IAspect,
    RemovalPolicy,
    aws_ec2 as ec2,
)
from constructs import Construct, IConstruct

from config.deployment_config import DeploymentConfiguration, RetentionPolicy
from components.network import NetworkTopology

HTTP_PORT = 80
HTTPS_PORT = 443
POSTGRES_PORT = 5432


class Role(Enum):
    LOAD_BALANCER = "load-balancer"
    APPLICATION = "application"
    DATABASE = "database"


class Direction(Enum):
    INGRESS = "ingress"
    EGRESS = "egress"


# A role or an external CIDR block
Endpoint = Union[Role, str]


@dataclass(frozen=True)
class PermissionEdge:
    """Traffic allowed from ``source`` to ``target``, held by the ``direction`` side."""
    source: Endpoint
    target: Endpoint
    protocol: str
    port: int
    direction: Direction


@dataclass(frozen=True)
class DenyAllSentinel:
    """
    Egress rule that can never match real traffic.

    A security group with no outbound rules gets an implicit "allow all";
    this rule replaces it. Nothing can hold 255.255.255.255 and ICMP type 252
    code 86 does not exist. CDK emits it for any group created with
    ``allow_all_outbound=False`` that has no other egress rule.
    """
    cidr: str = "255.255.255.255/32"
    protocol: str = "icmp"
    icmp_type: int = 252
    icmp_code: int = 86


DENY_ALL_SENTINEL = DenyAllSentinel()


@jsii.implements(IAspect)
class RetainTopology:
    """Apply RETAIN to every CloudFormation resource under the visited scope."""

    def visit(self, node: IConstruct) -> None:
        if isinstance(node, CfnResource):
            node.apply_removal_policy(RemovalPolicy.RETAIN)


class AccessPolicy(Construct):
    """
    Security groups for the load balancer, the web instances and the database.

    Default deny: no group allows all outbound traffic and every permitted
    flow is listed in ``edges``.
    """

    def __init__(self, scope: Construct, construct_id: str,
                 network: NetworkTopology, config: DeploymentConfiguration,
                 **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        vpc = network.vpc
        self.lb_port = HTTPS_PORT if config.lb_https_enabled else HTTP_PORT
        edges = []

        # ====================================================================
        # Load balancer - HTTP or HTTPS, scoped to the configured CIDRs
        # ====================================================================
        self.lb_security_group = ec2.SecurityGroup(
            self, "LbSecurityGroup",
            vpc=vpc,
            description="Security Group for the Load Balancer",
            security_group_name="lb-security-group-name",
            allow_all_outbound=False
        )
        self.lb_security_group.add_egress_rule(
            peer=ec2.Peer.ipv4(config.loadbalancer_outbound_cidr),
            connection=ec2.Port.tcp(self.lb_port),
            description=f"Allow outgoing traffic over port {self.lb_port}"
        )
        self.lb_security_group.add_ingress_rule(
            peer=ec2.Peer.ipv4(config.loadbalancer_inbound_cidr),
            connection=ec2.Port.tcp(self.lb_port),
            description=f"Allow incoming traffic over port {self.lb_port}"
        )
        edges += [
            PermissionEdge(Role.LOAD_BALANCER, config.loadbalancer_outbound_cidr,
                           "tcp", self.lb_port, Direction.EGRESS),
            PermissionEdge(config.loadbalancer_inbound_cidr, Role.LOAD_BALANCER,
                           "tcp", self.lb_port, Direction.INGRESS),
        ]

        # ====================================================================
        # Web instances - only reachable from the load balancer
        # ====================================================================
        self.web_security_group = ec2.SecurityGroup(
            self, "WebSecurityGroup",
            vpc=vpc,
            description="Security Group for the Web instances",
            security_group_name="web-security-group",
            allow_all_outbound=False
        )
        self.web_security_group.add_egress_rule(
            peer=ec2.Peer.ipv4(config.webserver_outbound_cidr),
            connection=ec2.Port.tcp(HTTP_PORT),
            description=f"Allow outgoing traffic over port {HTTP_PORT}"
        )
        self.web_security_group.connections.allow_from(
            self.lb_security_group, ec2.Port.tcp(HTTP_PORT)
        )
        edges += [
            PermissionEdge(Role.APPLICATION, config.webserver_outbound_cidr,
                           "tcp", HTTP_PORT, Direction.EGRESS),
            *self._connection_edges(Role.LOAD_BALANCER, Role.APPLICATION, HTTP_PORT),
        ]

        # ====================================================================
        # Database - only reachable from the web instances, no egress at all
        # (the group keeps only the deny-all sentinel)
        # ====================================================================
        self.db_security_group = ec2.SecurityGroup(
            self, "DbSecurityGroup",
            vpc=vpc,
            description="Security Group for the RDS instance",
            security_group_name="db-security-group",
            allow_all_outbound=False
        )
        self.db_security_group.connections.allow_from(
            self.web_security_group, ec2.Port.tcp(POSTGRES_PORT)
        )
        edges += self._connection_edges(Role.APPLICATION, Role.DATABASE, POSTGRES_PORT)

        self.edges: Tuple[PermissionEdge, ...] = tuple(edges)
        self.sentinels = {Role.DATABASE: DENY_ALL_SENTINEL}

        # ====================================================================
        # Retention - keeping the database means keeping the whole topology,
        # isolated subnets cannot outlive the VPC they belong to
        # ====================================================================
        if config.retention_policy is RetentionPolicy.RETAIN:
            self.retain(network, self)

    @staticmethod
    def _connection_edges(source: Role, target: Role, port: int) -> Iterable[PermissionEdge]:
        # Connections between two locked down groups add a rule on both sides
        return (
            PermissionEdge(source, target, "tcp", port, Direction.EGRESS),
            PermissionEdge(source, target, "tcp", port, Direction.INGRESS),
        )

    @staticmethod
    def retain(*scopes: IConstruct) -> None:
        """
        Mark every resource below ``scopes`` as retained.

        Runs as an aspect so rules added to these groups later (for example
        by the database initializer) are retained as well.
        """
        for scope in scopes:
            Aspects.of(scope).add(RetainTopology())

    def allows(self, source: Endpoint, target: Endpoint) -> bool:
        return any(edge.source == source and edge.target == target for edge in self.edges)

