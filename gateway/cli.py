#!/usr/bin/env python3
"""
Moderator command line for the abuse gateway.

Writes block and ban records straight to the record store and runs
ad-hoc enforcement checks against it.
"""

import sys
import json

import click

from gateway.config import GatewayConfig, configure_logging
from gateway.enforcement import BlockEnforcementEngine, HeaderCountryResolver
from gateway.errors import GatewayError
from gateway.moderation import ModerationService
from gateway.store import RecordStore


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


@click.group()
@click.option('--redis-host', default=None, help='Redis host (defaults to REDIS_HOST or config)')
@click.option('--redis-port', default=None, type=int, help='Redis port')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
@click.pass_context
def main(ctx, redis_host, redis_port, verbose):
    """Manage IP, country, account and device blocks."""
    ctx.ensure_object(dict)
    config = GatewayConfig.from_env()
    config.logging.level = "DEBUG" if verbose else "WARNING"
    config.logging.format = "text"
    configure_logging(config.logging)

    if 'store' not in ctx.obj:
        if redis_host:
            config.redis.host = redis_host
        if redis_port:
            config.redis.port = redis_port
        ctx.obj['store'] = RecordStore.from_config(config.redis, config.enforcement.review_queue_key)
    ctx.obj.setdefault('moderation', ModerationService(ctx.obj['store']))


def _fail(e: Exception) -> None:
    click.echo(f"Error: {e}", err=True)
    sys.exit(1)


@main.command('block-ip')
@click.argument('ip')
@click.option('--reason', '-r', required=True, help='Reason recorded with the block')
@click.option('--hours', type=float, default=None, help='Block duration in hours')
@click.option('--permanent', is_flag=True, help='Never expire')
@click.option('--country', default=None, help='ISO country code of the IP')
@click.option('--user-id', default=None, help='Account that triggered the block')
@click.pass_obj
def block_ip(obj, ip, reason, hours, permanent, country, user_id):
    """Block sign-ups from an IP address."""
    try:
        record = obj['moderation'].block_ip(ip, reason, duration_hours=hours, permanent=permanent,
                                            country_code=country, user_id=user_id)
    except GatewayError as e:
        _fail(e)
    _echo_json(record.model_dump(mode='json'))


@main.command('block-country')
@click.argument('country_code')
@click.option('--hours', type=float, default=24.0, show_default=True, help='Block duration in hours')
@click.option('--reason', '-r', default=None, help='Reason recorded with the block')
@click.option('--permanent', is_flag=True, help='Never expire')
@click.pass_obj
def block_country(obj, country_code, hours, reason, permanent):
    """Block sign-ups from a whole country."""
    try:
        record = obj['moderation'].block_country(country_code, duration_hours=hours,
                                                 reason=reason, permanent=permanent)
    except GatewayError as e:
        _fail(e)
    _echo_json(record.model_dump(mode='json'))


@main.command('unblock')
@click.argument('subject')
@click.option('--country', is_flag=True, help='Treat SUBJECT as a country code')
@click.pass_obj
def unblock(obj, subject, country):
    """Remove an IP or country block."""
    try:
        if country:
            removed = obj['moderation'].unblock_country(subject)
        else:
            removed = obj['moderation'].unblock(subject)
    except GatewayError as e:
        _fail(e)
    _echo_json({'subject': subject, 'removed': removed})


@main.command('ban-user')
@click.argument('user_id')
@click.pass_obj
def ban_user(obj, user_id):
    """Ban an account (its devices then count as ban evasion)."""
    try:
        obj['moderation'].ban_user(user_id)
    except GatewayError as e:
        _fail(e)
    _echo_json({'userId': user_id, 'banned': True})


@main.command('ban-device')
@click.argument('fingerprint_hash')
@click.pass_obj
def ban_device(obj, fingerprint_hash):
    """Ban a device fingerprint."""
    try:
        obj['moderation'].ban_device(fingerprint_hash)
    except GatewayError as e:
        _fail(e)
    _echo_json({'fingerprintHash': fingerprint_hash, 'banned': True})


@main.command('check')
@click.argument('ip')
@click.option('--country', default=None, help='Country code to evaluate alongside the IP')
@click.pass_obj
def check(obj, ip, country):
    """Show the enforcement verdict for an IP."""
    headers = {'x-country-code': country} if country else {}
    resolver = HeaderCountryResolver('x-country-code') if country else None
    engine = BlockEnforcementEngine(obj['store'], country_resolver=resolver)
    try:
        verdict = engine.check(ip, headers)
    except GatewayError as e:
        _fail(e)
    _echo_json(verdict.to_response())


if __name__ == '__main__':
    main()
