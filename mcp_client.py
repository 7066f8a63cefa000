#!/usr/bin/env python3
"""Command-line test client for the Ethereum Trading MCP Server (TCP transport)."""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, Optional

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def build_request(method: str, params: Optional[Dict[str, Any]] = None, request_id: int = 1) -> Dict[str, Any]:
    request: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        request["params"] = params
    return request


def tool_call(name: str, arguments: Dict[str, Any], request_id: int = 1) -> Dict[str, Any]:
    return build_request("tools/call", {"name": name, "arguments": arguments}, request_id)


async def send_request(request: Dict[str, Any], host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                       timeout: float = 30.0) -> Dict[str, Any]:
    reader, writer = await asyncio.open_connection(host, port)
    try:
        writer.write(json.dumps(request).encode("utf-8") + b"\n")
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), timeout=timeout)
    finally:
        writer.close()
    if not line:
        raise ConnectionError("Server closed the connection without responding")
    return json.loads(line)


def request_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    if args.command == "list":
        return build_request("tools/list")
    if args.command == "ping":
        return build_request("ping")
    if args.command == "balance":
        arguments = {"address": args.address}
        if args.token:
            arguments["token_address"] = args.token
        return tool_call("get_balance", arguments)
    if args.command == "price":
        return tool_call("get_token_price", {"token_identifier": args.token, "quote_currency": args.quote})
    if args.command == "swap":
        return tool_call("swap_tokens", {
            "from_token": args.from_token,
            "to_token": args.to_token,
            "amount": args.amount,
            "slippage": args.slippage,
            "wallet_address": args.wallet,
        })
    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--timeout", type=float, default=30.0, help="seconds to wait for a response")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List available tools")
    sub.add_parser("ping", help="Check the server is alive")

    balance_parser = sub.add_parser("balance", help="Query wallet balance")
    balance_parser.add_argument("address", help="wallet address (0x...)")
    balance_parser.add_argument("--token", help="ERC20 address or symbol (omit for ETH)")

    price_parser = sub.add_parser("price", help="Get token price in USD/ETH")
    price_parser.add_argument("token", help="token symbol or address")
    price_parser.add_argument("--quote", default="USD", choices=["USD", "ETH"])

    swap_parser = sub.add_parser("swap", help="Simulate a token swap")
    swap_parser.add_argument("from_token")
    swap_parser.add_argument("to_token")
    swap_parser.add_argument("amount", help="human-readable amount, e.g. 1.5")
    swap_parser.add_argument("--wallet", required=True, help="wallet address initiating the swap")
    swap_parser.add_argument("--slippage", type=float, default=0.5, help="tolerance in percent")

    return parser


def main() -> int:
    args = build_parser().parse_args()
    request = request_from_args(args)
    try:
        response = asyncio.run(send_request(request, args.host, args.port, args.timeout))
    except (OSError, asyncio.TimeoutError) as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps(response, indent=2))
    return 1 if "error" in response else 0


if __name__ == "__main__":
    raise SystemExit(main())
