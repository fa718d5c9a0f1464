#!/usr/bin/env python3
import argparse

from bridge_config import DEFAULT_TOKEN_LENGTH, mint_token


def main() -> None:
  parser = argparse.ArgumentParser(description="Generate LOCAL_MEET_TRANSLATOR_TOKEN for the meet bridge.")
  parser.add_argument("--length", type=int, default=DEFAULT_TOKEN_LENGTH, help=f"Token length (default: {DEFAULT_TOKEN_LENGTH})")
  args = parser.parse_args()

  if args.length < 16:
    raise SystemExit("Token length must be at least 16.")

  print(f"LOCAL_MEET_TRANSLATOR_TOKEN={mint_token(args.length)}")


if __name__ == "__main__":
  main()
