"""AWS S3 client construction for s3bridge.

Builds the aiobotocore client the proxy engine reads from. Credentials
are resolved in this order: explicit access key pair, named profile from
the shared credentials file, then the standard AWS credential chain
(env vars, ~/.aws/credentials, IAM role, etc.).
"""

import logging
import os
from typing import Any

from aiobotocore.session import AioSession
from botocore.config import Config as BotoConfig

from s3bridge.config import StoreConfig

logger = logging.getLogger(__name__)


def build_client_kwargs(config: StoreConfig) -> dict[str, Any]:
    """Translate the store section of the config into ``create_client`` kwargs.

    The HTTPS proxy comes from the config, or from ``HTTPS_PROXY`` in the
    environment, and is only wired when SSL is enabled.
    """
    client_kwargs: dict[str, Any] = {"region_name": config.region}
    if config.endpoint_url:
        client_kwargs["endpoint_url"] = config.endpoint_url
    if not config.ssl_enabled:
        client_kwargs["use_ssl"] = False

    boto_options: dict[str, Any] = {}
    if config.use_path_style:
        boto_options["s3"] = {"addressing_style": "path"}
    if config.timeout:
        boto_options["connect_timeout"] = config.timeout
        boto_options["read_timeout"] = config.timeout

    https_proxy = config.https_proxy or os.environ.get("HTTPS_PROXY", "")
    if https_proxy and config.ssl_enabled:
        boto_options["proxies"] = {"https": https_proxy}

    if boto_options:
        client_kwargs["config"] = BotoConfig(**boto_options)

    if config.access_key_id and config.secret_access_key:
        client_kwargs["aws_access_key_id"] = config.access_key_id
        client_kwargs["aws_secret_access_key"] = config.secret_access_key

    return client_kwargs


def create_s3_client(config: StoreConfig):
    """Create an aiobotocore S3 client context.

    The returned object is an async context manager; entering it yields
    the client and exiting it closes the connection pool.

    Args:
        config: The store section of the s3bridge configuration.
    """
    session = AioSession(profile=config.profile) if config.profile else AioSession()
    client_kwargs = build_client_kwargs(config)
    logger.info(
        "Creating S3 client: region=%s endpoint=%s path_style=%s",
        config.region,
        config.endpoint_url or "default",
        config.use_path_style,
    )
    return session.create_client("s3", **client_kwargs)
