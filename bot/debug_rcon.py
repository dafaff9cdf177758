import argparse
import logging
import sys

import bot_config as config
from rcon_client import RCONClient
from rcon_errors import AuthFailed, RCONError


def main(argv=None) -> int:
    p = argparse.ArgumentParser(prog="debug_rcon", description="Connect to a CS2 server over RCON and run one command.")
    p.add_argument("--host", default=config.RCON_HOST)
    p.add_argument("--port", type=int, default=config.RCON_PORT)
    p.add_argument("--password", default=config.RCON_PASSWORD)
    p.add_argument("--timeout-ms", type=int, default=config.RCON_TIMEOUT_MS)
    p.add_argument("--verbose", action="store_true")
    p.add_argument("command", nargs="?", default="status")
    args = p.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    with RCONClient(command_timeout_ms=args.timeout_ms) as rcon:
        rcon.add_state_listener(lambda change: print(f"State: {change.previous.value} -> {change.current.value}"))
        rcon.add_error_listener(lambda error: print(f"Error: {type(error).__name__}: {error}", file=sys.stderr))

        print(f"Connecting to {args.host}:{args.port}...")
        try:
            rcon.connect(args.host, args.port, args.password, args.timeout_ms)
        except AuthFailed:
            print("AUTH FAILED (Bad Password)")
            return 1
        except RCONError:
            print("CONNECT FAILED")
            return 1
        print("AUTH SUCCESS")

        try:
            response = rcon.send_command(args.command)
        except RCONError:
            return 1
        print(f"> {args.command}")
        print(response)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
