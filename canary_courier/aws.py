"""
boto3 session and client construction
"""

import asyncio
import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import RemoteAPIError, RemoteNotFound

logger = logging.getLogger(__name__)


def new_session(region: Optional[str] = None, profile: Optional[str] = None) -> boto3.Session:
    """Create a boto3 session for the given region/profile"""
    logger.debug(f"Creating AWS session: region={region}, profile={profile}")
    return boto3.Session(region_name=region or None, profile_name=profile or None)


def new_client(service: str, region: Optional[str] = None, profile: Optional[str] = None,
               endpoint_url: Optional[str] = None, session: Optional[boto3.Session] = None):
    """Create a boto3 client, optionally against a custom endpoint"""
    session = session or new_session(region, profile)
    kwargs = {}
    if endpoint_url:
        kwargs['endpoint_url'] = endpoint_url
    return session.client(service, region_name=region or None, **kwargs)


NOT_FOUND_CODES = {
    'TargetGroupNotFound',
    'ListenerNotFound',
    'RuleNotFound',
    'LoadBalancerNotFound',
    'NoSuchHostedZone',
}


def call(client, operation: str, **kwargs):
    """
    Invoke a client operation, translating botocore errors.

    Not-found error codes become RemoteNotFound, everything else RemoteAPIError
    with the request input logged.
    """
    try:
        return getattr(client, operation)(**kwargs)
    except ClientError as e:
        code = e.response.get('Error', {}).get('Code', '')
        if code in NOT_FOUND_CODES:
            logger.debug(f"{operation} found nothing for input {kwargs}: {e}")
            raise RemoteNotFound(code, _identifier(kwargs), f"calling {operation}: {e}") from e
        logger.error(f"{operation} failed with input {kwargs}: {e}")
        raise RemoteAPIError(operation, e) from e
    except BotoCoreError as e:
        logger.error(f"{operation} failed with input {kwargs}: {e}")
        raise RemoteAPIError(operation, e) from e


def _identifier(kwargs) -> str:
    for key in ('Names', 'ListenerArns', 'TargetGroupArns', 'RuleArn', 'ListenerArn', 'Id', 'HostedZoneId'):
        if key in kwargs:
            value = kwargs[key]
            return ','.join(value) if isinstance(value, list) else str(value)
    return ''


async def call_in_thread(func, *args):
    """
    Run a blocking write in a worker thread.

    Cancellation does not stop the thread, so a cancelled caller still waits
    for the write to land before CancelledError propagates. Callers never
    return while a request they issued is in flight.
    """
    future = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        if not future.done():
            logger.info('Waiting for the in-flight write to finish before stopping')
        results = await asyncio.gather(future, return_exceptions=True)
        if isinstance(results[0], Exception):
            logger.error(f"In-flight write failed during cancellation: {results[0]}")
        raise
