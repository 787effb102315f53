#!/usr/bin/env python3
"""
Concrete Passport Command Line Interface

Works against a SQLite snapshot; every mutating command loads the registry,
applies one operation and saves it back.

Usage:
    cpassport create <package-key> --locator <loc> [--material <id>] [--lab <identity>]
    cpassport show <id-or-key>
    cpassport update <id-or-key> --locator <loc>
    cpassport finalize <id-or-key> --grade <grade> --cert-hash <hash>
    cpassport history <id-or-key>
    cpassport consensus <id-or-key>
    cpassport verify-log
    cpassport certificate <id-or-key> --output <file.pdf>
    cpassport keygen --identity <identity> [--output <file>]
    cpassport hash --file <file>

Global options: --db <path> (default $CPASSPORT_DB or data/passports.db),
--as <identity> (default $CPASSPORT_CALLER).
"""

import argparse
import json
import os
import sys
from pathlib import Path

from .errors import InvalidArgumentError, RegistryError
from .registry import RegistryConfig


def save_json(data: dict, path: str):
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def _config_from_env() -> RegistryConfig:
    return RegistryConfig(
        required_validations=int(os.getenv("REQUIRED_VALIDATIONS", "3")),
        finalize_policy=os.getenv("FINALIZE_POLICY", "none"),
        freeze_materials_on_finalize=os.getenv("FREEZE_MATERIALS_ON_FINALIZE", "false").lower() == "true",
        lab_tests_required=int(os.getenv("LAB_TESTS_REQUIRED", "1")),
        admin_identity=os.getenv("ADMIN_IDENTITY") or None,
    )


class Session:
    """A loaded registry bound to its snapshot file."""

    def __init__(self, db_path: str):
        from .events import SqliteEventLog
        from .persistence import SqliteSnapshotStore

        self.store = SqliteSnapshotStore(db_path)
        self.event_log = SqliteEventLog(db_path)
        self.registry = self.store.load(_config_from_env(), event_log=self.event_log)

    def save(self):
        self.store.save(self.registry)

    def passport_id(self, ref: str) -> int:
        if ref.isdigit():
            return int(ref)
        return self.registry.resolve(ref)


def _caller(args) -> str:
    if not args.caller:
        raise InvalidArgumentError("caller identity required: pass --as or set CPASSPORT_CALLER")
    return args.caller


def cmd_create(args):
    s = Session(args.db)
    p = s.registry.create_passport(args.package_key, args.material or "", args.locator,
                                   _caller(args), args.lab)
    s.save()
    print(f"✓ Passport {p.id} created for {p.package_key}")
    return 0


def cmd_show(args):
    s = Session(args.db)
    p = s.registry.get_passport(s.passport_id(args.passport))
    print(json.dumps(p.to_dict(), indent=2))
    return 0


def cmd_update(args):
    s = Session(args.db)
    p = s.registry.update_data_locator(s.passport_id(args.passport), args.locator, _caller(args))
    s.save()
    print(f"✓ Passport {p.id} data locator updated (version {p.version})")
    return 0


def cmd_finalize(args):
    s = Session(args.db)
    p = s.registry.finalize(s.passport_id(args.passport), args.grade, args.cert_hash, _caller(args))
    s.save()
    print(f"✓ Passport {p.id} finalized with grade {p.final_grade}")
    return 0


def cmd_history(args):
    s = Session(args.db)
    passport_id = s.passport_id(args.passport)
    out = {
        "materials": [m.to_dict() for m in s.registry.materials(passport_id)],
        "process_events": [e.to_dict() for e in s.registry.history(passport_id)],
    }
    print(json.dumps(out, indent=2))
    return 0


def cmd_consensus(args):
    s = Session(args.db)
    status = s.registry.consensus_status(s.passport_id(args.passport))
    mark = "✓" if status.reached else "✗"
    print(f"{mark} {status.passed}/{status.required} passing validators ({status.total} submissions)")
    return 0 if status.reached else 2


def cmd_verify_log(args):
    s = Session(args.db)
    proof = s.event_log.proof()
    if proof["chain_valid"]:
        print(f"✓ Event log intact: {proof['entries']} entries, head {proof['head_entry_hash']}")
        return 0
    print(f"✗ Event log broken at seq {proof['first_invalid_seq']}")
    return 1


def cmd_certificate(args):
    from .certificate import render_certificate

    s = Session(args.db)
    r = s.registry
    passport_id = s.passport_id(args.passport)
    pdf = render_certificate(
        r.get_passport(passport_id),
        r.materials(passport_id),
        r.history(passport_id),
        r.consensus_status(passport_id),
        r.tests_for_passport(passport_id),
    )
    Path(args.output).write_bytes(pdf)
    print(f"✓ Certificate written to {args.output}")
    return 0


def cmd_keygen(args):
    import base64
    from .signing import ValidatorKey

    key = ValidatorKey.generate(args.identity)
    data = key.to_dict()
    if args.output:
        data["signing_key"] = base64.b64encode(key.signing_key).decode("utf-8")
        save_json(data, args.output)
        print(f"Key pair written to: {args.output}")
    print(f"Public key: {key.verify_key_b64}")
    return 0


def cmd_hash(args):
    from .hashing import content_locator

    data = Path(args.file).read_bytes()
    print(content_locator(data))
    return 0


COMMANDS = {
    "create": cmd_create,
    "show": cmd_show,
    "update": cmd_update,
    "finalize": cmd_finalize,
    "history": cmd_history,
    "consensus": cmd_consensus,
    "verify-log": cmd_verify_log,
    "certificate": cmd_certificate,
    "keygen": cmd_keygen,
    "hash": cmd_hash,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cpassport",
        description="Concrete Passport provenance registry",
    )
    parser.add_argument("--db", default=os.getenv("CPASSPORT_DB", "data/passports.db"),
                        help="SQLite snapshot file")
    parser.add_argument("--as", dest="caller", default=os.getenv("CPASSPORT_CALLER"),
                        help="Caller identity")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    create_parser = subparsers.add_parser("create", help="Create a passport")
    create_parser.add_argument("package_key", help="Package key, e.g. PROD-2024-001")
    create_parser.add_argument("-l", "--locator", required=True, help="Data package locator")
    create_parser.add_argument("-m", "--material", help="Material / mix reference")
    create_parser.add_argument("--lab", help="Producing lab identity")

    show_parser = subparsers.add_parser("show", help="Show a passport")
    show_parser.add_argument("passport", help="Passport id or package key")

    update_parser = subparsers.add_parser("update", help="Update the data locator")
    update_parser.add_argument("passport", help="Passport id or package key")
    update_parser.add_argument("-l", "--locator", required=True, help="New data package locator")

    finalize_parser = subparsers.add_parser("finalize", help="Finalize a passport")
    finalize_parser.add_argument("passport", help="Passport id or package key")
    finalize_parser.add_argument("-g", "--grade", required=True, help="Final grade, e.g. M40")
    finalize_parser.add_argument("-c", "--cert-hash", required=True, help="Certification hash")

    history_parser = subparsers.add_parser("history", help="Show provenance history")
    history_parser.add_argument("passport", help="Passport id or package key")

    consensus_parser = subparsers.add_parser("consensus", help="Show validator consensus")
    consensus_parser.add_argument("passport", help="Passport id or package key")

    subparsers.add_parser("verify-log", help="Verify the event log hash chain")

    cert_parser = subparsers.add_parser("certificate", help="Render a PDF certificate")
    cert_parser.add_argument("passport", help="Passport id or package key")
    cert_parser.add_argument("-o", "--output", required=True, help="Output PDF file")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a validator signing key")
    keygen_parser.add_argument("-i", "--identity", required=True, help="Validator identity")
    keygen_parser.add_argument("-o", "--output", help="Output file for the key pair")

    hash_parser = subparsers.add_parser("hash", help="Compute a content locator for a file")
    hash_parser.add_argument("-f", "--file", required=True, help="File to hash")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except RegistryError as e:
        print(f"✗ {e.kind.value}: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
