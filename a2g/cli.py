from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import typing as t

import colorama
import halo

import a2g
from a2g.backend import ChatBackend
from a2g.backend.openai import OpenAIBackend
from a2g.backend.openai import check_connection
from a2g.config import A2GConfig
from a2g.config import config_path
from a2g.config import home_dir
from a2g.config import init_home
from a2g.config import is_initialized
from a2g.config import load_config
from a2g.config import logs_dir
from a2g.config import reset_config
from a2g.engine import ToolConversationEngine
from a2g.exceptions import A2GError
from a2g.prompts import build_system_prompt
from a2g.streaming import SegmentMode
from a2g.streaming import StreamSegmenter
from a2g.streaming import partial_marker_suffix
from a2g.streaming import segment_stream
from a2g.streaming import split_thinking
from a2g.streaming import strip_thinking
from a2g.tools.filesystem import default_toolset
from a2g.types.completion import ToolInvocationRecord
from a2g.types.message import Message
from a2g.utils import preview

logger = logging.getLogger("a2g.cli")

Fore = colorama.Fore
Style = colorama.Style

HELP_TEXT = """\
Commands:
  /exit, /quit   End the conversation
  /clear         Reset conversation history
  /stream        Toggle streaming mode
  /tools         Toggle file tools
  /help          Show this help"""


def log_info(message: str) -> None:
    print(f"{Fore.BLUE}[I]{Style.RESET_ALL} {message}")


def log_success(message: str) -> None:
    print(f"{Fore.GREEN}[✓]{Style.RESET_ALL} {message}")


def log_warn(message: str) -> None:
    print(f"{Fore.YELLOW}[W]{Style.RESET_ALL} {message}")


def log_error(message: str) -> None:
    print(f"{Fore.RED}[E]{Style.RESET_ALL} {message}", file=sys.stderr)


def print_header(title: str) -> None:
    print()
    print(Style.DIM + "=" * 60 + Style.RESET_ALL)
    print(Style.BRIGHT + Fore.CYAN + title + Style.RESET_ALL)
    print(Style.DIM + "=" * 60 + Style.RESET_ALL)


def setup_logging(debug: bool) -> None:
    """Configure root logging for the CLI.

    Warnings go to stderr. In debug mode everything down to DEBUG is logged
    to stderr and to `~/.a2g-cli/logs/a2g.log`.
    """
    handlers = [logging.StreamHandler(sys.stderr)]  # type: t.List[logging.Handler]
    if debug:
        try:
            logs_dir().mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(logs_dir() / "a2g.log", encoding="utf-8"))
        except OSError as exc:
            print(f"Cannot open log file in {logs_dir()}: {exc}", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.INFO if debug else logging.WARNING)


def _spinner() -> halo.Halo:
    return halo.Halo(text="Thinking", spinner="dots", enabled=sys.stdout.isatty())


class StreamPrinter:
    """Writes segmenter snapshots to the terminal as they grow.

    Visible text is printed normally and thinking text dimmed. A trailing
    partial marker such as `"<thi"` is held back until the next fragment
    decides whether it opens a thinking block.
    """

    def __init__(
        self,
        segmenter: StreamSegmenter,
        *,
        show_thinking: bool = True,
        out: t.TextIO | None = None,
    ):
        self.segmenter = segmenter
        self.show_thinking = show_thinking
        self.out = out or sys.stdout
        self._shown_visible = 0
        self._shown_thinking = 0
        self._thinking_started = False
        self._thinking_done = False

    def _write(self, text: str, style: str = "") -> None:
        if text:
            self.out.write(f"{style}{text}{Style.RESET_ALL}" if style else text)
            self.out.flush()

    def _flush_visible(self, held: int = 0) -> None:
        visible = self.segmenter.visible
        safe = len(visible) - held
        if safe > self._shown_visible:
            self._write(visible[self._shown_visible : safe])
            self._shown_visible = safe

    def _flush_thinking(self, text: str, held: int = 0) -> None:
        if not self.show_thinking:
            return
        if not self._thinking_started:
            self._thinking_started = True
            self._write("\n💭 ", Style.DIM)
        safe = len(text) - held
        if safe > self._shown_thinking:
            self._write(text[self._shown_thinking : safe], Style.DIM)
            self._shown_thinking = safe

    def update(self) -> None:
        mode = self.segmenter.mode
        if mode is SegmentMode.OUTSIDE:
            self._flush_visible(partial_marker_suffix(self.segmenter.visible))
        elif mode is SegmentMode.INSIDE:
            self._flush_visible()
            thinking = self.segmenter.thinking
            self._flush_thinking(thinking, partial_marker_suffix(thinking))
        else:
            if not self._thinking_done:
                self._thinking_done = True
                self._flush_thinking(self.segmenter.thought)
                if self.show_thinking:
                    self._write("\n\n")
            self._flush_visible()

    def finish(self) -> None:
        """Flush whatever was held back once the stream has ended."""
        if self.segmenter.mode is SegmentMode.INSIDE:
            self._flush_thinking(self.segmenter.thinking)
        self._flush_visible()
        self._write("\n")


class ChatSession:
    """Interactive chat state: history, mode switches and the backend.

    Only the visible part of each answer is kept in the history; thinking
    segments and tool rounds are never recorded.
    """

    def __init__(self, config: A2GConfig, backend: ChatBackend):
        self.config = config
        self.backend = backend
        settings = config.settings
        self.streaming = settings.stream_response
        self.tools_enabled = settings.tools_enabled
        self.show_thinking = settings.show_thinking
        self.toolset = default_toolset(settings.workspace, writable=settings.auto_approve)
        self.engine = ToolConversationEngine(
            backend,
            max_rounds=settings.max_tool_rounds,
            parallel_tools=settings.parallel_tools,
        )
        self.history = []  # type: t.List[Message]

    def system_prompt(self) -> str:
        return build_system_prompt(
            self.toolset if self.tools_enabled else None,
            workspace=self.config.settings.workspace,
            template=self.config.system_prompt,
        )

    def handle_command(self, command: str) -> bool:
        """Apply a slash command. Returns False when the session should end."""
        name = command.lower()
        if name in ("/exit", "/quit"):
            return False
        if name == "/clear":
            self.history.clear()
            log_info("Conversation history cleared")
        elif name == "/stream":
            self.streaming = not self.streaming
            log_info(f"Streaming {'on' if self.streaming else 'off'}")
        elif name == "/tools":
            self.tools_enabled = not self.tools_enabled
            log_info(f"File tools {'on' if self.tools_enabled else 'off'}")
        elif name == "/help":
            print(HELP_TEXT)
        else:
            log_warn(f"Unknown command {command}; type /help")
        return True

    async def ask(self, text: str) -> str:
        """Send one user turn and print the answer.

        Returns:
            The visible answer recorded in the history.
        """
        turn = [*self.history, Message.user(text)]
        if self.tools_enabled:
            answer = await self._ask_with_tools(turn)
        elif self.streaming:
            answer = await self._ask_streaming(turn)
        else:
            answer = await self._ask_plain(turn)
        self.history.extend([Message.user(text), Message.assistant(answer)])
        return answer

    async def _ask_streaming(self, turn: list[Message]) -> str:
        segmenter = StreamSegmenter()
        printer = StreamPrinter(segmenter, show_thinking=self.show_thinking)
        print(f"{Fore.BLUE}🤖 Assistant:{Style.RESET_ALL} ", end="", flush=True)
        stream = await self.backend.stream(turn, system_prompt=self.system_prompt())
        async for _ in segment_stream(stream, segmenter):
            printer.update()
        printer.finish()
        return segmenter.visible

    async def _ask_plain(self, turn: list[Message]) -> str:
        spinner = _spinner()
        spinner.start()
        try:
            response = await self.backend.complete(turn, system_prompt=self.system_prompt())
        finally:
            spinner.stop()
        return self._print_answer(response.content or "")

    async def _ask_with_tools(self, turn: list[Message]) -> str:
        spinner = _spinner()

        def _report(record: ToolInvocationRecord) -> None:
            spinner.stop()
            args = record.args if isinstance(record.args, str) else ", ".join(
                f"{key}={value!r}" for key, value in record.args.items()
            )
            print(f"{Fore.MAGENTA}🔧 {record.tool}({preview(args, 80)}){Style.RESET_ALL}")
            print(f"{Style.DIM}   {preview(record.result, 120)}{Style.RESET_ALL}")
            spinner.start()

        spinner.start()
        try:
            result = await self.engine.run(
                turn, self.toolset, self.system_prompt(), on_invocation=_report
            )
        finally:
            spinner.stop()
        logger.debug("Answered in %s rounds", result.rounds)
        return self._print_answer(result.final_text)

    def _print_answer(self, text: str) -> str:
        if self.show_thinking:
            split = split_thinking(text)
            thought = split.thought or split.thinking
            if thought:
                print(f"{Style.DIM}💭 {thought.strip()}{Style.RESET_ALL}\n")
            visible = split.visible
        else:
            visible = strip_thinking(text)
        print(f"{Fore.BLUE}🤖 Assistant:{Style.RESET_ALL} {visible.strip()}")
        return visible

    async def loop(self) -> None:
        endpoint = self.config.endpoint
        print_header(f"A2G-CLI v{a2g.__version__}")
        print(f"Model: {endpoint.model} | Endpoint: {endpoint.name}")
        print(f"Mode: {'streaming' if self.streaming else 'standard'} | "
              f"Tools: {'on' if self.tools_enabled else 'off'}")
        print(HELP_TEXT)
        print()

        async with self.backend:
            while True:
                try:
                    user_input = input(f"{Fore.GREEN}🧑 You:{Style.RESET_ALL} ").strip()
                except (KeyboardInterrupt, EOFError):
                    print()
                    break

                if not user_input:
                    continue
                if user_input.startswith("/"):
                    if not self.handle_command(user_input):
                        break
                    continue

                try:
                    await self.ask(user_input)
                except A2GError as exc:
                    log_error(str(exc))
                print()
        print("👋 Goodbye!")


def _load(args: argparse.Namespace) -> A2GConfig:
    config = load_config()
    if getattr(args, "endpoint", None):
        config = config.with_endpoint(args.endpoint)
    return config


def cmd_chat(args: argparse.Namespace) -> int:
    config = _load(args)
    changes = {}  # type: t.Dict[str, t.Any]
    if args.no_stream:
        changes["stream_response"] = False
    if args.no_tools:
        changes["tools_enabled"] = False
    if changes:
        config = config.with_settings(**changes)

    backend = OpenAIBackend(openai_config=config.endpoint.to_openai_config())
    asyncio.run(ChatSession(config, backend).loop())
    return 0


def cmd_test(args: argparse.Namespace) -> int:
    endpoint = _load(args).endpoint
    log_info(f"Testing {endpoint.name} ({endpoint.base_url}, model {endpoint.model})")
    result = asyncio.run(
        check_connection(
            endpoint.base_url, endpoint.api_key, endpoint.model, timeout=endpoint.timeout
        )
    )
    if result.ok:
        log_success("Connection OK")
        return 0
    log_error(f"Connection failed: {result.error}")
    return 1


def cmd_config_init(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    if is_initialized():
        log_warn(f"Already initialized at {home_dir()}; use `a2g config reset` to start over")
        return 0
    config = init_home()
    log_success(f"Initialized {home_dir()}")
    print(f"  config: {config_path()}")
    print(f"  logs:   {logs_dir()}")
    print(f"  endpoint: {config.endpoint.name} ({config.endpoint.base_url})")
    print("Set the API key in the config file or the A2G_API_KEY environment variable.")
    return 0


def cmd_config_show(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    if not is_initialized():
        log_warn("A2G-CLI is not initialized; run `a2g config init`")
        return 1
    config = load_config()
    print_header("A2G-CLI configuration")
    for endpoint in config.endpoints:
        marker = "*" if endpoint.id == config.current_endpoint else " "
        print(f"{marker} {endpoint.id}: {endpoint.name}")
        print(f"    URL: {endpoint.base_url}")
        print(f"    Model: {endpoint.model}")
        print(f"    API key: {'********' if endpoint.api_key else '(none)'}")
    print("Settings:")
    for key, value in config.settings.model_dump().items():
        print(f"  {key}: {value}")
    return 0


def cmd_config_reset(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    reset_config()
    log_success(f"Configuration reset to defaults in {config_path()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="a2g", description="A2G-CLI: chat with OpenAI-compatible models in the terminal."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {a2g.__version__}")
    parser.add_argument("--debug", action="store_true", help="log debug output")
    parser.set_defaults(func=cmd_chat, endpoint=None, no_stream=False, no_tools=False)
    sub = parser.add_subparsers(dest="command")

    chat = sub.add_parser("chat", help="start an interactive chat (default)")
    chat.add_argument("--endpoint", help="endpoint id to use instead of the current one")
    chat.add_argument("--no-stream", action="store_true", help="wait for complete answers")
    chat.add_argument("--no-tools", action="store_true", help="disable the file tools")
    chat.add_argument(
        "--debug", action="store_true", default=argparse.SUPPRESS, help="log debug output"
    )
    chat.set_defaults(func=cmd_chat)

    test = sub.add_parser("test", help="test the connection to the endpoint")
    test.add_argument("--endpoint", help="endpoint id to test")
    test.add_argument(
        "--debug", action="store_true", default=argparse.SUPPRESS, help="log debug output"
    )
    test.set_defaults(func=cmd_test)

    config = sub.add_parser("config", help="manage the configuration")
    config_sub = config.add_subparsers(dest="action", required=True)
    config_sub.add_parser("init", help="create ~/.a2g-cli and a default config").set_defaults(
        func=cmd_config_init
    )
    config_sub.add_parser("show", help="show the current configuration").set_defaults(
        func=cmd_config_show
    )
    config_sub.add_parser("reset", help="restore the default configuration").set_defaults(
        func=cmd_config_reset
    )
    return parser


def main(argv: t.Sequence[str] | None = None) -> int:
    colorama.init(autoreset=True)
    args = build_parser().parse_args(argv)

    debug = args.debug
    if not debug and is_initialized():
        try:
            debug = load_config().settings.debug_mode
        except A2GError:
            debug = False
    setup_logging(debug)

    try:
        return args.func(args)
    except A2GError as exc:
        log_error(str(exc))
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
