import json

import boto3
import psycopg2
from psycopg2 import errors, sql

secrets_client = boto3.client('secretsmanager')

ROLE_EXISTS = "SELECT 1 FROM pg_catalog.pg_roles WHERE rolname = %s"


def get_secret_value(secret_id):
    """Retrieve the admin credentials (username, password, host, port) from Secrets Manager"""
    response = secrets_client.get_secret_value(SecretId=secret_id)
    return json.loads(response['SecretString'])


def create_web_user(connection, username, db_name):
    """
    Create ``username`` for IAM authentication and give it ``db_name``.

    Safe to run again: the user is only created when missing, and granting
    a role or privilege twice is a no-op in PostgreSQL.
    """
    created = False
    with connection.cursor() as cursor:
        cursor.execute(ROLE_EXISTS, (username,))
        if cursor.fetchone() is None:
            try:
                cursor.execute(sql.SQL("CREATE USER {}").format(sql.Identifier(username)))
                created = True
            except errors.DuplicateObject:
                print(f"User {username} was created concurrently")

        # rds_iam lets the user log in with an IAM token instead of a password
        cursor.execute(sql.SQL("GRANT rds_iam TO {}").format(sql.Identifier(username)))
        cursor.execute(
            sql.SQL("GRANT ALL PRIVILEGES ON DATABASE {} TO {}").format(
                sql.Identifier(db_name), sql.Identifier(username)
            )
        )

    return {
        'username': username,
        'database': db_name,
        'created': created
    }


def handler(event, context):
    """
    Create the web user the application connects with.

    Expected event format:
    {
        "params": {
            "config": {
                "dbCredentialsName": "demo-database-credentials",
                "dbWebUsername": "dbwebuser",
                "dbName": "demo"
            }
        }
    }

    Failures are returned as {"status": "ERROR", ...} instead of raised, so
    the custom resource always gets a payload to report.
    """
    try:
        config = event['params']['config']
        secret = get_secret_value(config['dbCredentialsName'])

        connection = psycopg2.connect(
            host=secret['host'],
            port=secret.get('port', 5432),
            user=secret['username'],
            password=secret['password'],
            dbname=config['dbName'],
            connect_timeout=10
        )
        try:
            connection.autocommit = True
            results = create_web_user(connection, config['dbWebUsername'], config['dbName'])
        finally:
            connection.close()

        print(f"Initialised database: {json.dumps(results)}")
        return {
            'status': 'OK',
            'results': results
        }

    except Exception as e:
        print(f"Error: {str(e)}")
        return {
            'status': 'ERROR',
            'err': type(e).__name__,
            'message': str(e)
        }
