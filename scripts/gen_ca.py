# scripts/gen_ca.py
"""
Create a Root CA. Same as `localca create-ca`; flags are passed through.
Usage: python scripts/gen_ca.py [--out-dir certs] [--cn "My Root CA"] ...
Writes rootCA.key (private -- DO NOT COMMIT), rootCA.crt, rootCA.srl, rootCA.db
"""
import sys

from localca.cli import main

if __name__ == "__main__":
    sys.exit(main(["create-ca"] + sys.argv[1:]))
