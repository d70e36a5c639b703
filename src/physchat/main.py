"""
CLI Entrypoint for PhysChat Search

Runs a plain, deterministic or agentic search on a question and outputs the
response as JSON.
"""

import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv

# Load .env file before importing modules that need env vars
load_dotenv()

from physchat.agent import LiteratureSearchAgent
from physchat.backends.llm import LLMClient
from physchat.backends.tesseract import TesseractAuthError, TesseractClient, TesseractError
from physchat.sanitize import InvalidQueryError


# Parse command-line arguments
def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="PhysChat Search - find and synthesize APS physics papers for a question",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--query", "-q",
        type=str,
        required=True,
        help="The research question",
    )

    parser.add_argument(
        "--mode", "-m",
        choices=["search", "deterministic", "agentic"],
        default="agentic",
        help="search: plain keyword search; deterministic: one upfront plan; agentic: LLM-directed loop (default)",
    )

    parser.add_argument(
        "--max-results", "-n",
        type=int,
        default=15,
        help="Results to request for plain or fallback searches (default: 15)",
    )

    parser.add_argument(
        "--summarize",
        action="store_true",
        help="Attach a one-sentence summary to each result",
    )

    parser.add_argument(
        "--token",
        type=str,
        default=os.environ.get("TESSERACT_ACCESS_TOKEN"),
        help="Search API bearer token (default: $TESSERACT_ACCESS_TOKEN)",
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output file path (default: print to stdout)",
    )

    return parser.parse_args(argv)


# Main entry point of the entire program
async def main(argv=None) -> int:
    args = parse_args(argv)

    if not args.token:
        print("Error: no search token (use --token or TESSERACT_ACCESS_TOKEN)", file=sys.stderr)
        return 2

    # Initialize LLM client (reads ANTHROPIC_API_KEY from environment)
    llm_client = None
    if os.environ.get("ANTHROPIC_API_KEY"):
        llm_client = LLMClient()
        print("LLM client initialized", file=sys.stderr)
    else:
        print("Warning: ANTHROPIC_API_KEY not set, AI steps will use fallbacks", file=sys.stderr)

    agent = LiteratureSearchAgent(llm_client=llm_client, search_client=TesseractClient())

    try:
        if args.mode == "search":
            result = await agent.search(args.query, args.token, limit=args.max_results)
        else:
            result = await agent.ai_search(
                args.query,
                args.token,
                limit=args.max_results,
                mode=args.mode,
                summarize=args.summarize,
            )
    except InvalidQueryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except TesseractAuthError:
        print("Error: search token rejected, sign in again", file=sys.stderr)
        return 1
    except TesseractError as e:
        print(f"Error: search failed: {e}", file=sys.stderr)
        return 1
    finally:
        await agent.close()

    # Format output as JSON
    output = json.dumps(result, indent=2, ensure_ascii=False)

    # Write output
    if args.output:  # Write to file
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output)
        print(f"Results saved to {args.output}", file=sys.stderr)
    else:  # Print to stdout
        print(output)

    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
