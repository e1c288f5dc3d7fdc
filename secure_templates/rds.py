"""
Secure RDS template - the database is never public, always encrypted at
rest and always keeps at least one day of automated backups.
"""

from aws_cdk import Duration, aws_rds as rds
from constructs import Construct


class SecureDatabaseInstance(rds.DatabaseInstance):
    """
    Secure-by-default RDS instance with enforced encryption, no public access
    and mandatory backups.

    Callers cannot create a publicly accessible database; the guardrail
    raises before anything is added to the construct tree.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        publicly_accessible: bool = False,
        **kwargs
    ):
        # ENFORCE SECURITY: Block public access
        if publicly_accessible:
            raise ValueError(
                f"SECURITY VIOLATION: Database {construct_id} cannot be publicly accessible. "
                "Place it in the isolated subnets and connect through the web tier."
            )

        # ENFORCE ENCRYPTION
        kwargs["storage_encrypted"] = True

        # ENFORCE BACKUPS - zero days would switch automated backups off
        if "backup_retention" not in kwargs or kwargs["backup_retention"].to_days() < 1:
            kwargs["backup_retention"] = Duration.days(1)

        super().__init__(scope, construct_id, publicly_accessible=False, **kwargs)
