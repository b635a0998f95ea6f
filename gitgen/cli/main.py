"""CLI Main Entry Point"""

import asyncio
import sys

from loguru import logger

from gitgen.cli.args import parse_args
from gitgen.cli.commands import display_config, run_detect, run_install_completion
from gitgen.config import Config, ConfigManager, get_manager
from gitgen.llm import (
    AuthenticationError,
    HttpTransport,
    LLMError,
    LLMResponse,
    LogSuppression,
    RequestPolicy,
    get_client,
)
from gitgen.logger import configure_logging
from gitgen.output import dim, print_error, format_failure, Spinner

EXIT_FAILURE = 1
EXIT_AUTH_FAILURE = 2
EXIT_INTERRUPTED = 130


def _handle_subcommands(args, manager: ConfigManager):
    """Handle subcommands that exit early.

    Returns:
        tuple: (exit_code, should_exit) - exit_code if should_exit is True
    """
    if args.install_completion:
        return run_install_completion(), True
    if args.display_config:
        return display_config(manager), True
    return 0, False


def _read_prompt(args) -> str | None:
    if args.prompt:
        return args.prompt
    if sys.stdin.isatty():
        return None
    return sys.stdin.read().strip() or None


def _build_policy(args, config: Config) -> RequestPolicy:
    """Request options from args and config.

    Precedence: CLI args > config file
    """
    max_retries = args.max_retries if args.max_retries is not None else config.max_retries
    return RequestPolicy(
        max_retries=max_retries,
        timeout=config.timeout,
        error_context="chat completion",
        log_suppression=LogSuppression.VERBOSE if args.verbose else LogSuppression.NORMAL,
    )


def _print_verbose_stats(response: LLMResponse) -> None:
    """Print token usage and healing info to stderr."""
    print(file=sys.stderr)
    print(dim(f"  Model: {response.model}"), file=sys.stderr)
    if response.input_tokens is not None:
        print(dim(f"  Prompt: {response.input_tokens} tokens"), file=sys.stderr)
    print(dim(f"  Response: {response.tokens_used} tokens total"), file=sys.stderr)
    if response.healed:
        print(dim("  Parameters were re-detected and saved during this call"), file=sys.stderr)


async def _run(args, manager: ConfigManager) -> int:
    config = manager.load()
    model = manager.resolve_model(
        name=args.model,
        url=args.url,
        model_id=args.model_id,
        api_key=args.api_key,
        no_auth=args.no_auth,
    )
    logger.debug(f"Using model {model.name} ({model.model_id}) at {model.url}")

    prompt = None
    if not args.detect:
        prompt = _read_prompt(args)
        if not prompt:
            print_error("No prompt given. Pass it as an argument or pipe it on stdin.")
            return EXIT_FAILURE

    async with HttpTransport() as transport:
        client = get_client(model, persister=manager, transport=transport, policy=_build_policy(args, config))
        if args.detect:
            return await run_detect(client)

        with Spinner(f"Waiting for {client.name}"):
            response = await client.generate(prompt, system_prompt=args.system)

    print(response.content)
    if args.verbose:
        _print_verbose_stats(response)
    return 0


def main() -> int:
    """Main entry point for the CLI."""
    args = parse_args()
    configure_logging(verbose=args.verbose)

    manager = get_manager()

    # Handle subcommands that exit early
    exit_code, should_exit = _handle_subcommands(args, manager)
    if should_exit:
        return exit_code

    try:
        return asyncio.run(_run(args, manager))
    except AuthenticationError as e:
        print_error(format_failure(e))
        return EXIT_AUTH_FAILURE
    except LLMError as e:
        print_error(format_failure(e))
        return EXIT_FAILURE
    except ValueError as e:
        print_error(str(e))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print_error("Cancelled.")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
