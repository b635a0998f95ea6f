"""CLI Argument Parsing"""

import argparse
import argcomplete

from gitgen import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gitgen',
        description='Send a prompt to any OpenAI-compatible endpoint, adapting to its parameter dialect',
        epilog='Example: git diff --staged | gitgen --system "Write a commit message"'
    )

    parser.add_argument('-v', '--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('prompt', nargs='?', metavar='PROMPT', help='Prompt text (read from stdin when omitted)')

    # Model selection
    parser.add_argument('-m', '--model', type=str, metavar='NAME', help='Configured model to use')
    parser.add_argument('--url', type=str, metavar='URL', help='Chat completions endpoint URL')
    parser.add_argument('--model-id', type=str, metavar='ID', help='Model identifier sent to the endpoint')
    parser.add_argument('--api-key', type=str, metavar='KEY', help='API key for the endpoint')
    parser.add_argument('--no-auth', action='store_true', help='Send no credentials (local servers)')

    # Request options
    parser.add_argument('--system', type=str, metavar='TEXT', help='System prompt')
    parser.add_argument('--max-retries', type=int, metavar='N', help='Retries for transient failures (default: 3)')

    # Output options
    parser.add_argument('--verbose', action='store_true', help='Debug logging, token usage and healing info')

    # Setup/config
    parser.add_argument('--detect', action='store_true', help='Detect the model\'s parameter dialect and save it')
    parser.add_argument('--display-config', action='store_true', help='Show current configuration')
    parser.add_argument('--install-completion', action='store_true', help='Install shell tab completion')

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    argcomplete.autocomplete(parser)
    args = parser.parse_args(argv)
    if args.max_retries is not None and args.max_retries < 0:
        parser.error('--max-retries must be 0 or greater')
    return args
