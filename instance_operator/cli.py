"""``instance-ctl``: manage challenge instances through the gateway API.

The gateway is located through ``INSTANCE_API_BASE`` (and ``INSTANCE_API_TOKEN``)
unless ``--base``/``--token`` are given.
"""

import argparse
import json
import os
import sys

import requests

from .client import InstanceClient


def _print(data):
    print(json.dumps(data, indent=2, sort_keys=True))


def _instance_parser(sub, name, help_text):
    parser = sub.add_parser(name, help=help_text)
    parser.add_argument("challenge_id")
    parser.add_argument("source_id")
    return parser


def build_parser():
    parser = argparse.ArgumentParser(prog="instance-ctl", description="Manage challenge instances")
    parser.add_argument("--base", default=os.getenv("INSTANCE_API_BASE", ""), help="Gateway base URL")
    parser.add_argument("--token", default=os.getenv("INSTANCE_API_TOKEN", ""), help="Bearer token")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("health", help="Check that the gateway answers")
    create = _instance_parser(sub, "create", "Create an instance (or return the existing one)")
    create.add_argument("--additional", action="append", default=[], metavar="KEY=VALUE")
    _instance_parser(sub, "get", "Show one instance")
    listing = sub.add_parser("list", help="List instances")
    listing.add_argument("--source-id")
    _instance_parser(sub, "delete", "Delete an instance")
    validate = _instance_parser(sub, "validate", "Submit a flag")
    validate.add_argument("flag")
    _instance_parser(sub, "renew", "Extend an instance")
    challenges = sub.add_parser("challenges", help="List challenges, or show one")
    challenges.add_argument("challenge_id", nargs="?")
    return parser


def _additional(pairs):
    additional = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        additional[key] = value
    return additional


def run(args, gateway):
    """Execute one parsed command; returns the process exit code."""
    if args.command == "health":
        healthy = gateway.health()
        _print({"status": "ok" if healthy else "unhealthy"})
        return 0 if healthy else 1
    if args.command == "create":
        _print(gateway.create_instance(args.challenge_id, args.source_id, _additional(args.additional)))
    elif args.command == "get":
        instance = gateway.get_instance(args.challenge_id, args.source_id)
        if instance is None:
            print("Instance not found", file=sys.stderr)
            return 1
        _print(instance)
    elif args.command == "list":
        _print(gateway.list_instances(source_id=args.source_id))
    elif args.command == "delete":
        _print(gateway.delete_instance(args.challenge_id, args.source_id))
    elif args.command == "validate":
        valid = gateway.validate_flag(args.challenge_id, args.source_id, args.flag)
        _print({"valid": valid})
        return 0 if valid else 1
    elif args.command == "renew":
        _print(gateway.renew_instance(args.challenge_id, args.source_id))
    elif args.command == "challenges" and args.challenge_id:
        _print(gateway.get_challenge(args.challenge_id))
    elif args.command == "challenges":
        _print(gateway.list_challenges())
    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        gateway = InstanceClient(args.base, token=args.token)
        return run(args, gateway)
    except ValueError as exc:
        parser.error(str(exc))
    except requests.RequestException as exc:
        print(f"Gateway request failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
