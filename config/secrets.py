"""
AWS Secrets Manager integration for API credentials

Gemini, Polar.sh and Resend keys are read from Secrets Manager when the
service runs inside AWS, and from environment variables everywhere else.
"""

import json
import os
import logging
from typing import Optional
from functools import lru_cache

import boto3
import requests
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

EC2_METADATA_URL = "http://169.254.169.254/latest/meta-data/"


def _unwrap_secret_string(secret_name: str, secret_string: str) -> str:
    """
    Secrets created from the console are often stored as {"KEY": "value"}.
    A single-entry JSON object is unwrapped to its value, anything else is
    returned untouched.
    """
    try:
        parsed = json.loads(secret_string)
    except (TypeError, ValueError):
        return secret_string

    if isinstance(parsed, dict) and len(parsed) == 1:
        logger.debug(f"Unwrapped JSON secret: {secret_name}")
        return str(next(iter(parsed.values())))
    return secret_string


@lru_cache(maxsize=32)
def get_secret(secret_name: str, region_name: str = "ap-northeast-2") -> Optional[str]:
    """
    Retrieve a secret from AWS Secrets Manager (cached per process)

    Args:
        secret_name: Name of the secret in Secrets Manager
        region_name: AWS region

    Returns:
        Secret value as string, or None if retrieval fails
    """
    try:
        client = boto3.client('secretsmanager', region_name=region_name)
        response = client.get_secret_value(SecretId=secret_name)
        secret_value = response.get('SecretString')
        if secret_value is None:
            logger.warning(f"⚠️ Secret has no string value: {secret_name}")
            return None

        logger.info(f"✅ Successfully retrieved secret: {secret_name}")
        return _unwrap_secret_string(secret_name, secret_value)

    except ClientError as e:
        error_code = e.response['Error']['Code']

        if error_code == 'ResourceNotFoundException':
            logger.warning(f"⚠️ Secret not found: {secret_name}")
        elif error_code == 'AccessDeniedException':
            logger.error(f"❌ Access denied to secret: {secret_name}")
        else:
            logger.error(f"❌ Error retrieving secret {secret_name}: {e}")
        return None

    except Exception as e:
        logger.error(f"❌ Unexpected error retrieving secret {secret_name}: {str(e)}")
        return None


def is_aws_environment() -> bool:
    """Detect Lambda, ECS or EC2 hosting"""
    if os.getenv('AWS_EXECUTION_ENV'):
        return True

    if os.getenv('ECS_CONTAINER_METADATA_URI'):
        return True

    # Local runs and tests never reach the metadata endpoint
    if os.getenv('TESTING', 'false').lower() == 'true':
        return False

    try:
        response = requests.get(EC2_METADATA_URL, timeout=0.1)
        return bool(response.status_code == 200)
    except requests.RequestException:
        return False


def get_secret_or_env(
    secret_name: str,
    env_var_name: str,
    region_name: str = "ap-northeast-2",
    required: bool = True
) -> Optional[str]:
    """
    Get value from Secrets Manager if in AWS environment, otherwise from environment variable

    Raises:
        ValueError: If required=True and value not found anywhere

    Example:
        >>> api_key = get_secret_or_env('hairdirector-gemini-api-key', 'GEMINI_API_KEY')
    """
    if is_aws_environment():
        logger.info(f"🔐 AWS environment detected - retrieving secret: {secret_name}")
        secret_value = get_secret(secret_name, region_name)
        if secret_value:
            return secret_value
        logger.warning(f"⚠️ Failed to retrieve secret {secret_name}, falling back to env var")

    env_value = os.getenv(env_var_name)
    if env_value:
        logger.info(f"✅ Using environment variable: {env_var_name}")
        return env_value

    if required:
        error_msg = (
            f"Required secret not found: {secret_name} (Secrets Manager) "
            f"or {env_var_name} (environment variable)"
        )
        logger.error(f"❌ {error_msg}")
        raise ValueError(error_msg)

    logger.warning(f"⚠️ Optional secret not found: {secret_name}/{env_var_name}")
    return None
