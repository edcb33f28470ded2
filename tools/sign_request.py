"""Sign an EBK request body for one operation.

Reads a JSON body from a file (or stdin with "-"), stamps ts and sig,
and prints the signed body. The secret comes from API_SECRET.

Usage: python tools/sign_request.py birth body.json [--ts 1700000000]
"""
import argparse, json, os, sys
from ebk.signing import SIGNED_FIELDS, sign_body

def main(argv=None):
    ap = argparse.ArgumentParser()
    ap.add_argument("operation", choices=sorted(SIGNED_FIELDS))
    ap.add_argument("body", help="path to JSON body, or - for stdin")
    ap.add_argument("--ts", type=int, default=None)
    ap.add_argument("--scheme", choices=["md5", "hmac-sha256"], default=os.getenv("EBK_SIGNATURE_SCHEME", "md5"))
    args = ap.parse_args(argv)

    secret = os.getenv("API_SECRET")
    if not secret:
        print("API_SECRET is not set", file=sys.stderr); return 2

    if args.body == "-":
        body = json.load(sys.stdin)
    else:
        with open(args.body, "r", encoding="utf-8") as f:
            body = json.load(f)

    signed = sign_body(args.operation, body, secret, ts=args.ts, scheme=args.scheme)
    print(json.dumps(signed, indent=2))
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
