"""
Command line entry point.

    tournament-ledger serve [--host HOST] [--port PORT]
    tournament-ledger validate-env [--tier TIER]
    tournament-ledger lobby LOBBY_ID
    tournament-ledger lobbies
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import LedgerConfig, validate_environment
from .exceptions import ConfigurationError
from .ledger.provider import build_web3
from .ledger.reader import LedgerReader

logger = logging.getLogger("tournament_ledger")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tournament-ledger", description="Tournament ledger tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the wallet-link HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    validate = sub.add_parser("validate-env", help="Check environment variables for a tier")
    validate.add_argument("--tier", choices=["production", "test", "development"], default=None)

    lobby = sub.add_parser("lobby", help="Print one lobby as JSON")
    lobby.add_argument("lobby_id")

    sub.add_parser("lobbies", help="Print all public lobbies as JSON")
    return parser


def _reader(config: LedgerConfig) -> LedgerReader:
    return LedgerReader(build_web3(config), config.contract_address, multicall_address=config.multicall_address)


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "validate-env":
        report = validate_environment(args.tier)
        print(json.dumps({"tier": report.tier, "errors": report.errors, "warnings": report.warnings}, indent=2))
        return 0 if report.valid else 1

    try:
        config = LedgerConfig.from_env()
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    if args.command == "serve":
        import uvicorn

        from .api import app_from_config

        uvicorn.run(app_from_config(config), host=args.host, port=args.port)
        return 0

    reader = _reader(config)
    if args.command == "lobby":
        read = reader.get_lobby_result(args.lobby_id, with_allowlist=True)
        if read.lobby is None:
            print(json.dumps({"lobbyId": args.lobby_id, "status": read.status.value, "error": read.error}))
            return 1
        print(read.lobby.model_dump_json(indent=2))
        return 0

    lobbies = reader.list_public_lobbies()
    print(json.dumps([lobby.model_dump(mode="json") for lobby in lobbies], indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
