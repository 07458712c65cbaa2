#!/usr/bin/env python3
"""Run one gateway tool invocation and print the JSON result.

Usage:
    python scripts/run.py "list all workspaces"                    # dry-run plan
    python scripts/run.py "check if example.com is available" --execute
    python scripts/run.py --tool wallet_balance
    python scripts/run.py --tool check_domain_availability --input '{"domainName": "example.com"}'
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mailgate.app import configure_logging, create_gateway  # noqa: E402
from mailgate.config import settings  # noqa: E402
from mailgate.core.errors import error_report  # noqa: E402


async def _run(tool: str, params: dict) -> int:
    gateway = await create_gateway(settings)
    try:
        result = await gateway.dispatcher.dispatch(tool, params)
        code = 1 if "error" in result else 0
    except Exception as e:
        result = {"error": error_report(e)}
        code = 1
    finally:
        await gateway.aclose()
    print(json.dumps(result, indent=2, default=str))
    return code


def main() -> None:
    parser = argparse.ArgumentParser(description="Zapmail gateway tool runner")
    parser.add_argument("instruction", nargs="?", help="Natural-language instruction for plan_and_execute")
    parser.add_argument("--tool", default="plan_and_execute", help="Tool name (default: plan_and_execute)")
    parser.add_argument("--input", default="{}", help="Tool input as a JSON object")
    parser.add_argument("--execute", action="store_true", help="Execute the plan instead of a dry run")
    args = parser.parse_args()

    try:
        params = json.loads(args.input)
    except json.JSONDecodeError as e:
        parser.error(f"--input is not valid JSON: {e}")
    if not isinstance(params, dict):
        parser.error("--input must be a JSON object")

    if args.tool == "plan_and_execute":
        if args.instruction:
            params["instruction"] = args.instruction
        if args.execute:
            params["execute"] = True

    configure_logging(settings)
    sys.exit(asyncio.run(_run(args.tool, params)))


if __name__ == "__main__":
    main()
