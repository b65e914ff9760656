"""Object store clients for s3bridge."""

from s3bridge.config import StoreConfig


def create_store_client(config: StoreConfig):
    """Create a store client context for the configured backend.

    Supports 'aws' (aiobotocore, any S3-compatible endpoint) and 'memory'.
    The memory client is seeded on entry by the application lifespan.

    Args:
        config: The store section of the configuration.

    Returns:
        An async context manager yielding the client.
    """
    backend = config.backend
    if backend == "aws":
        from s3bridge.store.aws import create_s3_client

        return create_s3_client(config)
    elif backend == "memory":
        from s3bridge.store.memory import MemoryS3Client

        return MemoryS3Client()
    else:
        raise ValueError(f"Unknown store backend: {backend}")
