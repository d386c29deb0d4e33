import sys
import asyncio
import argparse

from dotenv import load_dotenv

from .log import setup_logging
from .github import GitHubError
from .roast import RoastError, roast_user


def _print_chunk(chunk: str) -> None:
    sys.stdout.write(chunk)
    sys.stdout.flush()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="roaster", description="Roast a GitHub user's recent activity.")
    parser.add_argument("username", help="GitHub username")
    args = parser.parse_args(argv)

    load_dotenv()
    setup_logging()

    try:
        asyncio.run(roast_user(args.username, on_chunk=_print_chunk))
    except (GitHubError, RoastError) as e:
        print(f"\nerror: {e}", file=sys.stderr)
        return 1
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
