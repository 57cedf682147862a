"""Command-line interface for LLM Audit."""

import argparse
import logging

import uvicorn

from .config import RequestLoggerOptions
from .interceptor import RequestLogger
from .proxy import DEFAULT_TARGET_URL, create_app
from .storage import JSONLStorage


def build_options(args: argparse.Namespace) -> RequestLoggerOptions:
    """Translate parsed arguments into request logger options."""
    return RequestLoggerOptions(
        enabled=not args.disable,
        log_file_path=args.output,
        include_system_prompt=not args.no_system_prompt,
        include_messages=not args.no_messages,
        include_tools=args.include_tools,
        max_message_length=args.max_message_length,
    )


def build_request_logger(options: RequestLoggerOptions) -> RequestLogger | None:
    """Create the request logger, or None when logging is switched off."""
    if not options.enabled:
        logging.info("Request logger is disabled")
        return None

    storage = JSONLStorage(options.log_file)
    logging.info(f"Request logger enabled. Logging to: {options.log_file}")
    return RequestLogger(options, storage)


def run_serve(args: argparse.Namespace) -> None:
    """Run the proxy server."""
    options = build_options(args)
    app = create_app(args.target, build_request_logger(options))

    print("Starting LLM Audit proxy server...")
    print(f"  Listening on: http://{args.host}:{args.port}")
    print(f"  Target API:   {args.target}")
    print(f"  Output file:  {options.log_file if options.enabled else '(disabled)'}")
    print()

    # Run the server
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="LLM Audit - Proxy server that audits chat-completion requests"
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser(
        "serve", help="Start the proxy server and log every generation request"
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port to listen on (default: 8080)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    serve_parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output JSONL file path (default: ~/.claude-code-router/api-requests.jsonl)",
    )
    serve_parser.add_argument(
        "--target",
        type=str,
        default=DEFAULT_TARGET_URL,
        help=f"Target API URL (default: {DEFAULT_TARGET_URL})",
    )
    serve_parser.add_argument(
        "--include-tools",
        action="store_true",
        help="Log tool names and descriptions from each request",
    )
    serve_parser.add_argument(
        "--no-system-prompt",
        action="store_true",
        help="Leave the system prompt out of the log",
    )
    serve_parser.add_argument(
        "--no-messages",
        action="store_true",
        help="Leave the message history out of the log",
    )
    serve_parser.add_argument(
        "--max-message-length",
        type=non_negative_int,
        default=0,
        help="Truncate logged message text to this many characters (default: 0, unlimited)",
    )
    serve_parser.add_argument(
        "--disable",
        action="store_true",
        help="Forward requests without logging anything",
    )
    return parser


def main():
    """Main entry point for the CLI."""
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = build_parser()
    args = parser.parse_args()

    if args.command == "serve":
        run_serve(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
