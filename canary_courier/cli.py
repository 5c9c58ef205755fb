#!/usr/bin/env python3
"""
Canary traffic courier command line

Shifts traffic between two versions behind an ALB listener or a weighted
Route53 record while watching health metrics.
"""

import argparse
import asyncio
import logging
import sys

from .config import CourierConfig, load_config
from .courier import reconcile_and_shift, shift_route53_record
from .errors import CourierError
from .models import parse_duration

logger = logging.getLogger('canary_courier')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Canary traffic courier for ALB listeners and Route53 records')
    parser.add_argument('--config', help='YAML configuration file')
    parser.add_argument('--region', help='AWS region')
    parser.add_argument('--profile', help='AWS profile')
    parser.add_argument('--endpoint-url', help='Custom control plane endpoint')
    parser.add_argument('--current', help='Current version / set identifier')
    parser.add_argument('--desired', help='Desired version / set identifier')
    parser.add_argument('--step', type=int, help='Weight increment per step')
    parser.add_argument('--interval', help='Time to hold each step (e.g. 5s, 1m)')
    parser.add_argument('--timeout', help='Abandon the rollout after this long (e.g. 30m)')
    parser.add_argument('--log-level', default='INFO', help='Logging level (default: INFO)')

    sub = parser.add_subparsers(dest='action', required=True)

    alb = sub.add_parser('alb', help='Reconcile listener rules and shift ALB forward weights')
    alb.add_argument('--vpc-id', help='VPC for newly created target groups')
    alb.add_argument('--cluster-name', help='Cluster name used for tagging')

    r53 = sub.add_parser('route53', help='Shift weights between two variants of a weighted record')
    r53.add_argument('--zone-id', help='Hosted zone ID')
    r53.add_argument('--record-name', help='Record name')

    return parser


def resolve_config(args) -> CourierConfig:
    config = load_config(args.config) if args.config else CourierConfig()
    return config.override(
        region=args.region,
        profile=args.profile,
        endpoint_url=args.endpoint_url,
        current_version=args.current,
        desired_version=args.desired,
        step_weight=args.step,
        step_interval=args.interval,
        vpc_id=getattr(args, 'vpc_id', None),
        cluster_name=getattr(args, 'cluster_name', None),
        zone_id=getattr(args, 'zone_id', None),
        record_name=getattr(args, 'record_name', None),
    )


async def run(args) -> None:
    config = resolve_config(args)
    timeout = parse_duration(args.timeout)

    if args.action == 'alb':
        rollout = reconcile_and_shift(config, config.current_version, config.desired_version)
    else:
        rollout = shift_route53_record(config, config.current_version, config.desired_version)

    if timeout:
        await asyncio.wait_for(rollout, timeout)
    else:
        await rollout


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        asyncio.run(run(args))
    except CourierError as e:
        logger.error(f"Rollout abandoned: {e}")
        sys.exit(1)
    except asyncio.TimeoutError:
        logger.error(f"Rollout abandoned: timed out after {args.timeout}")
        sys.exit(1)

    logger.info(f"{args.action} rollout completed successfully")
    sys.exit(0)


if __name__ == '__main__':
    main()
