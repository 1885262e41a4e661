import argparse
import json
import logging
import pathlib

from sitepilot.config import HandlerConfig
from sitepilot.prompt import SiteContent
from sitepilot.tools import ToolDefinition

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitepilot",
        description="Serve a streaming chat endpoint with page tools.",
    )
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--path", default="/api/chat")
    parser.add_argument(
        "--provider",
        choices=["openrouter", "openai_compatible", "anthropic", "gemini"],
        default="openrouter",
    )
    parser.add_argument("--model", default=None)
    parser.add_argument("--base-url", default=None)
    parser.add_argument("--temperature", type=float, default=0.7)
    parser.add_argument(
        "--idle-timeout", type=float, default=60.0,
        help="Seconds without upstream data before the turn fails (0 disables).",
    )
    prompt = parser.add_mutually_exclusive_group(required=True)
    prompt.add_argument("--prompt", help="System prompt text.")
    prompt.add_argument("--prompt-file", help="File holding the system prompt.")
    prompt.add_argument("--site-content", help="JSON file describing the site.")
    parser.add_argument("--tools", help="JSON file with a list of tool declarations.")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", default=None)
    return parser


def config_from_args(args: argparse.Namespace) -> HandlerConfig:
    if args.site_content:
        prompt = SiteContent.model_validate_json(
            pathlib.Path(args.site_content).read_text()
        )
    elif args.prompt_file:
        prompt = pathlib.Path(args.prompt_file).read_text()
    else:
        prompt = args.prompt

    tools = []
    if args.tools:
        raw = json.loads(pathlib.Path(args.tools).read_text())
        tools = [ToolDefinition.model_validate(t) for t in raw]

    provider: dict = {"kind": args.provider, "model": args.model}
    if args.base_url:
        provider["base_url"] = args.base_url

    return HandlerConfig(
        provider=provider,
        prompt=prompt,
        tools=tools,
        temperature=args.temperature,
        idle_timeout=args.idle_timeout or None,
    )


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    import uvicorn

    from sitepilot.server import create_app

    config = config_from_args(args)
    logger.info(
        f"Serving {config.provider.kind} chat on "
        f"http://{args.host}:{args.port}{args.path}"
    )
    uvicorn.run(create_app(config, path=args.path), host=args.host, port=args.port)
