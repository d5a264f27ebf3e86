# scripts/gen_cert.py
"""
Issue a certificate signed by the root CA. Same as `localca issue-leaf`.
Usage: python scripts/gen_cert.py --name mqtt --cn mqtt.internal [--ip 192.168.1.69]
Produces:
  <name>.key <name>.csr <name>.crt (and <name>.p12 with --p12)
"""
import sys

from localca.cli import main

if __name__ == "__main__":
    sys.exit(main(["issue-leaf"] + sys.argv[1:]))
