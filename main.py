import asyncio
import sys
from ethmcp import main as run_server

def main():
    """Launch the Ethereum Trading MCP Server"""
    # stdout carries protocol traffic in stdio mode
    print("Starting Ethereum Trading MCP Server...", file=sys.stderr)
    asyncio.run(run_server())

if __name__ == "__main__":
    main()
