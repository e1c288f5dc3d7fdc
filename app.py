#!/usr/bin/env python3
"""
Elastic Beanstalk + RDS - AWS CDK Application

Settings come from the "configuration" context value in cdk.json and are
validated before any construct is created.
"""

import os

import aws_cdk as cdk

from config.deployment_config import load_configuration
from stacks.elastic_beanstalk_stack import ElasticBeanstalkStack

app = cdk.App()

# Fails fast on invalid settings (e.g. HTTPS without a certificate)
config = load_configuration(app.node.try_get_context("configuration"))
print(f"Configuration settings: {config}")

# Environment configuration
env = cdk.Environment(
    account=app.node.try_get_context("account") or os.environ.get("CDK_DEFAULT_ACCOUNT"),
    region=app.node.try_get_context("region") or os.environ.get("CDK_DEFAULT_REGION")
)

# ============================================================================
# STACK: NETWORK -> SECURITY -> DATABASE -> INITIALIZER -> ELASTIC BEANSTALK
# ============================================================================
ElasticBeanstalkStack(
    app, "ElasticBeanstalkCdkStack",
    config=config,
    env=env,
    tags={
        "Application": config.application_name,
        "ManagedBy": "CDK"
    }
)

# ============================================================================
# SYNTHESIZE
# ============================================================================
app.synth()
