# localca/cli.py
"""
Command line front end.

  localca create-ca   [--cn ...] [--days 3650] [--bits 4096] ...
  localca issue-leaf  --name mqtt --cn mqtt.internal [--dns ...] [--ip ...] ...
  localca verify      --ca-cert rootCA.crt [cert ...]
  localca list        [--ca-dir .] [--serial HEX]

Every flag can also come from a LOCALCA_<NAME> environment variable.
Missing required values are prompted for on a terminal unless --no-input.
Exit codes: 0 ok, 2 configuration, 3 I/O, 4 cryptographic failure.
"""
import argparse
import logging
import sys
from typing import List, Optional

from localca.common import config as cfg
from localca.common.config import CAConfig, CAPaths, LeafConfig, build_config, from_env
from localca.common.errors import EXIT_OK, InvalidConfigError, LocalCAError, PersistenceError
from localca.common.log import setup_logging
from localca.common.utils import hex_to_serial, serial_to_hex
from localca.crypto import pki
from localca.crypto.ca import create_root_ca, load_ca
from localca.crypto.leaf import issue_leaf
from localca.prompts import Prompter
from localca.storage import db as dbmod

logger = logging.getLogger(__name__)

DN_FLAGS = (
    ("country", "--country", "C", "COUNTRY"),
    ("state", "--state", "ST", "STATE"),
    ("locality", "--locality", "L", "LOCALITY"),
    ("organization", "--org", "O", "ORG"),
    ("organizational_unit", "--ou", "OU", "OU"),
    ("email", "--email", "emailAddress", "EMAIL"),
)


def add_dn_flags(p: argparse.ArgumentParser) -> None:
    for field, flag, short, env in DN_FLAGS:
        p.add_argument(flag, dest=field, default=from_env(env), help=f"subject {short}")


def subject_from_args(args, common_name: str) -> dict:
    """DN fields given on the command line; the model supplies the rest."""
    subject = {"common_name": common_name}
    for field, _flag, _short, _env in DN_FLAGS:
        val = getattr(args, field, None)
        if val is not None:
            subject[field] = val
    return subject


def read_cert_file(path: str):
    try:
        with open(path, "rb") as f:
            return pki.load_cert(f.read())
    except OSError as e:
        raise PersistenceError(f"cannot read {path}: {e}", path=path) from e
    except ValueError as e:
        raise InvalidConfigError(f"{path} is not a PEM certificate: {e}", path=path) from e


def print_summary(title: str, cert) -> None:
    info = pki.describe(cert)
    print(f"---- {title} ----")
    print(f"subject:  {info['subject']}")
    print(f"issuer:   {info['issuer']}")
    print(f"serial:   {info['serial']}")
    print(f"notBefore: {info['not_before']}")
    print(f"notAfter:  {info['not_after']}")
    print(f"basicConstraints: {info['basic_constraints']}")
    if info["san"]:
        print(f"SAN: {', '.join(info['san'])}")
    if info["eku"]:
        print(f"EKU: {', '.join(info['eku'])}")
    print(f"sha256:   {info['sha256']}")


def cmd_create_ca(args, prompter: Prompter) -> int:
    cn = prompter.ask("Root CA CN", args.cn, default=cfg.DEFAULT_CA_CN)
    passphrase = prompter.secret("Root CA pass phrase", args.passphrase, confirm=True)
    config = build_config(
        CAConfig,
        key_bits=args.bits,
        validity_days=args.days,
        subject=subject_from_args(args, cn),
        passphrase=passphrase,
    )
    paths = CAPaths.in_dir(args.out_dir, key=args.key_file, cert=args.cert_file, serial=args.serial_file,
                           store=args.store_file)

    ca = create_root_ca(config, paths, overwrite=args.force)
    for p in (paths.key, paths.cert, paths.serial):
        print(f"OK: {p}")
    print_summary("Root CA", ca.cert)
    print("Do NOT commit the CA key to git.")
    return EXIT_OK


def cmd_issue_leaf(args, prompter: Prompter) -> int:
    paths = CAPaths.in_dir(args.ca_dir, key=args.ca_key, cert=args.ca_cert, serial=args.ca_serial,
                           store=args.ca_store)
    name = prompter.ask("Key name (output prefix, e.g. mqtt)", args.name)
    cn = prompter.ask("Common Name (CN, e.g. mqtt.internal)", args.cn)
    sans = [{"type": "DNS", "value": d} for d in args.dns or []]
    sans += [{"type": "IP", "value": ip} for ip in args.ip or []]

    ca_passphrase = prompter.secret("Root CA pass phrase", args.ca_passphrase)
    # CA is loaded before any leaf file is written
    ca = load_ca(paths, ca_passphrase)

    key_passphrase = prompter.secret(f"Pass phrase for {name}.key", args.key_passphrase, confirm=True)
    p12_password = prompter.optional_secret("PKCS#12 password", args.p12_password) if args.p12 else None
    config = build_config(
        LeafConfig,
        name=name,
        key_bits=args.bits,
        validity_days=args.days,
        subject=subject_from_args(args, cn),
        sans=sans,
        key_passphrase=key_passphrase,
        pkcs12=args.p12,
        pkcs12_password=p12_password,
        clamp_validity=args.clamp_validity,
    )

    leaf = issue_leaf(ca, config, out_dir=args.out_dir, overwrite=args.force)
    for p in leaf.paths.values():
        print(f"OK: {p}")
    print_summary("Leaf", leaf.cert)
    print(f"Chain verify: {leaf.paths['crt']}: OK")
    return EXIT_OK


def cmd_verify(args, prompter: Prompter) -> int:
    ca_cert = read_cert_file(args.ca_cert)
    targets = args.certs or [args.ca_cert]
    for path in targets:
        cert = read_cert_file(path)
        print_summary(path, cert)
        pki.verify_cert_signed_by_ca(cert, ca_cert)
        print(f"{path}: OK")
    return EXIT_OK


def cmd_list(args, prompter: Prompter) -> int:
    paths = CAPaths.in_dir(args.ca_dir, store=args.ca_store)
    if args.serial:
        try:
            serial = hex_to_serial(args.serial)
        except ValueError as e:
            raise InvalidConfigError(f"serial must be hex, got {args.serial!r}") from e
        row = dbmod.find_by_serial(paths.store, serial)
        if row is None:
            raise InvalidConfigError(f"serial {serial_to_hex(serial)} is not recorded in {paths.store}")
        rows = [row]
    else:
        rows = dbmod.list_issued(paths.store)
    if not rows:
        print(f"no certificates recorded in {paths.store}")
    for r in rows:
        print(f"{r['serial_hex']}  {r['not_after']}  {r['common_name']}  {r['cert_path'] or '-'}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="localca", description="Minimal local certificate authority")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING (default), ERROR")
    parser.add_argument("--no-input", action="store_true", help="never prompt; fail on missing values")
    sub = parser.add_subparsers(dest="cmd")

    p_ca = sub.add_parser("create-ca", help="generate the root key, certificate and serial file")
    p_ca.add_argument("--out-dir", default=from_env("OUT_DIR", "."))
    p_ca.add_argument("--key-file", default=from_env("CA_KEY"))
    p_ca.add_argument("--cert-file", default=from_env("CA_CERT"))
    p_ca.add_argument("--serial-file", default=from_env("CA_SERIAL"))
    p_ca.add_argument("--store-file", default=from_env("CA_STORE"))
    p_ca.add_argument("--cn", default=from_env("CA_CN"))
    p_ca.add_argument("--days", type=int, default=from_env("CA_DAYS", str(cfg.DEFAULT_CA_DAYS)))
    p_ca.add_argument("--bits", type=int, default=from_env("CA_BITS", str(cfg.DEFAULT_CA_KEY_BITS)))
    p_ca.add_argument("--passphrase", default=from_env("CA_PASSPHRASE"), help="CA key pass phrase")
    p_ca.add_argument("--force", action="store_true", help="overwrite an existing key/certificate")
    add_dn_flags(p_ca)
    p_ca.set_defaults(func=cmd_create_ca)

    p_leaf = sub.add_parser("issue-leaf", help="issue a server/client certificate signed by the root CA")
    p_leaf.add_argument("--out-dir", default=from_env("OUT_DIR", "."))
    p_leaf.add_argument("--ca-dir", default=from_env("CA_DIR", "."))
    p_leaf.add_argument("--ca-key", default=from_env("CA_KEY"))
    p_leaf.add_argument("--ca-cert", default=from_env("CA_CERT"))
    p_leaf.add_argument("--ca-serial", default=from_env("CA_SERIAL"))
    p_leaf.add_argument("--ca-store", default=from_env("CA_STORE"))
    p_leaf.add_argument("--ca-passphrase", default=from_env("CA_PASSPHRASE"))
    p_leaf.add_argument("--name", default=from_env("NAME"), help="output prefix, e.g. mqtt")
    p_leaf.add_argument("--cn", default=from_env("CN"))
    p_leaf.add_argument("--dns", action="append", help="DNS SAN (repeatable; default: the CN)")
    p_leaf.add_argument("--ip", action="append", help="IP SAN (repeatable)")
    p_leaf.add_argument("--days", type=int, default=from_env("DAYS", str(cfg.DEFAULT_LEAF_DAYS)))
    p_leaf.add_argument("--bits", type=int, default=from_env("BITS", str(cfg.DEFAULT_LEAF_KEY_BITS)))
    p_leaf.add_argument("--key-passphrase", default=from_env("KEY_PASSPHRASE"))
    p_leaf.add_argument("--p12", action="store_true", default=bool(from_env("P12")), help="also write <name>.p12")
    p_leaf.add_argument("--p12-password", default=from_env("P12_PASSWORD"))
    p_leaf.add_argument("--clamp-validity", action="store_true",
                        help="shorten the validity to the CA expiry instead of refusing")
    p_leaf.add_argument("--force", action="store_true", help="overwrite existing leaf files")
    add_dn_flags(p_leaf)
    p_leaf.set_defaults(func=cmd_issue_leaf)

    p_ver = sub.add_parser("verify", help="print and chain-verify certificates against the CA")
    p_ver.add_argument("--ca-cert", default=from_env("CA_CERT", cfg.DEFAULT_CA_CERT))
    p_ver.add_argument("certs", nargs="*")
    p_ver.set_defaults(func=cmd_verify)

    p_list = sub.add_parser("list", help="list certificates issued by the CA")
    p_list.add_argument("--ca-dir", default=from_env("CA_DIR", "."))
    p_list.add_argument("--ca-store", default=from_env("CA_STORE"))
    p_list.add_argument("--serial", help="show only the certificate with this hex serial")
    p_list.set_defaults(func=cmd_list)
    return parser


def main(argv: Optional[List[str]] = None, prompter: Optional[Prompter] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2
    prompter = prompter or Prompter.for_terminal(args.no_input)
    try:
        return args.func(args, prompter)
    except LocalCAError as e:
        print(f"error: {e}", file=sys.stderr)
        for p in e.partial_paths:
            print(f"  partial artifact left on disk: {p}", file=sys.stderr)
        logger.debug("command %s failed", args.cmd, exc_info=True)
        return e.exit_code
    except KeyboardInterrupt:
        print("aborted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
