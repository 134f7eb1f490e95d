"""
Shared plumbing for the boto3-backed providers.

boto3 clients are blocking, so every call runs in the default executor.
botocore errors are translated to the service error taxonomy:
- ClientError (the service answered and said no) -> ProviderError, message verbatim
- BotoCoreError (connection, timeout, credentials lookup) -> NetworkError
"""
import asyncio
import functools
import logging

from botocore.exceptions import BotoCoreError, ClientError

from telecare.services.core.exceptions import NetworkError, ProviderError

logger = logging.getLogger(__name__)


async def call_aws(operation, **kwargs):
    """Run a blocking boto3 client method off the event loop."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, functools.partial(operation, **kwargs))
    except ClientError as e:
        error = e.response.get("Error", {})
        code = error.get("Code")
        message = error.get("Message") or str(e)
        logger.warning(f"[AWS] {operation.__name__} rejected: {code}")
        raise ProviderError(message, code=code) from e
    except BotoCoreError as e:
        logger.warning(f"[AWS] {operation.__name__} transport failure: {e}")
        raise NetworkError(str(e)) from e
