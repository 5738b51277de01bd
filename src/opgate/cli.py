"""opgate CLI — hash, sign and inspect operation descriptors.

Usage:
    python -m opgate.cli hash --file op.json
    python -m opgate.cli sign --file op.json --out signed.json
    python -m opgate.cli recover --file signed.json
    python -m opgate.cli check-invariants --events data/events.jsonl

Descriptors are JSON objects in the ``OperationDescriptor.to_dict`` form.
``sign`` reads the private key from the environment (OPGATE_SIGNER_KEY by
default), loading a ``.env`` file at the project root first.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from opgate.config import ProtocolConfig
from opgate.crypto.signing import operation_hash, recover_signer, sign_operation
from opgate.errors import ProtocolError
from opgate.models.operation import OperationDescriptor


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_ENV = ROOT / ".env"
DEFAULT_KEY_ENV = "OPGATE_SIGNER_KEY"


def _load_descriptor(path: Path) -> OperationDescriptor:
    with path.open("r", encoding="utf-8") as f:
        return OperationDescriptor.from_dict(json.load(f))


def cmd_hash(args: argparse.Namespace) -> int:
    config = ProtocolConfig.from_config_dir(args.config)
    op = _load_descriptor(args.file)
    digest = operation_hash(op, config.orchestrator, config.chain_id)
    print("0x" + digest.hex())
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    load_dotenv(DEFAULT_ENV)
    private_key = os.getenv(args.key_env)
    if not private_key:
        print(f"Failed: {args.key_env} is not set", file=sys.stderr)
        return 1

    config = ProtocolConfig.from_config_dir(args.config)
    op = _load_descriptor(args.file)
    signed = sign_operation(op, private_key, config.orchestrator, config.chain_id)
    text = json.dumps(signed.to_dict(), indent=2)
    if args.out:
        args.out.write_text(text + "\n", encoding="utf-8")
        print(f"Signed descriptor written to {args.out}")
    else:
        print(text)
    return 0


def cmd_recover(args: argparse.Namespace) -> int:
    config = ProtocolConfig.from_config_dir(args.config)
    op = _load_descriptor(args.file)
    digest = operation_hash(op, config.orchestrator, config.chain_id)
    try:
        signer = recover_signer(digest, op.authorization, config.min_signature_length)
    except ProtocolError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(signer)
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run protocol invariant checks."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(config_dir=args.config, events_path=args.events)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opgate",
        description="opgate — delegated operation pipeline CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    sub = parser.add_subparsers(dest="command")

    # hash
    p_hash = sub.add_parser("hash", help="Print the operation hash of a descriptor")
    p_hash.add_argument("--file", type=Path, required=True, help="Descriptor JSON file")

    # sign
    p_sign = sub.add_parser("sign", help="Sign a descriptor with a key from the environment")
    p_sign.add_argument("--file", type=Path, required=True, help="Descriptor JSON file")
    p_sign.add_argument("--out", type=Path, help="Write the signed descriptor here")
    p_sign.add_argument(
        "--key-env", default=DEFAULT_KEY_ENV,
        help=f"Environment variable holding the private key (default: {DEFAULT_KEY_ENV})",
    )

    # recover
    p_rec = sub.add_parser("recover", help="Recover the signer of a signed descriptor")
    p_rec.add_argument("--file", type=Path, required=True, help="Signed descriptor JSON file")

    # check-invariants
    p_inv = sub.add_parser("check-invariants", help="Run protocol invariant checks")
    p_inv.add_argument("--events", type=Path, help="Event log JSONL to audit")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "hash": cmd_hash,
        "sign": cmd_sign,
        "recover": cmd_recover,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
