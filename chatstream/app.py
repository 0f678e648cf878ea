# chatstream/app.py
from __future__ import annotations
import argparse, logging, platform, sys
from pathlib import Path
from typing import Optional, TextIO

from .constants import APP_NAME, __version__
from .logging_config import init_logging
from .paths import default_data_dir, log_paths, settings_path
from .settings import load_settings, set_endpoint
from chatstream.core.transcript import Conversation, TranscriptSink
from chatstream.infra.llm.chat_client import ChatClient
from chatstream.infra.llm.decoder import DecoderSession, FAILED
from chatstream.infra.llm.parsers import WireFormat
from chatstream.infra.llm.sources import IterByteSource

log = logging.getLogger("boot")


class ConsoleSink(TranscriptSink):
    """TranscriptSink that also echoes the reply as it streams."""

    def __init__(self, conversation: Conversation, out: Optional[TextIO] = None, err: Optional[TextIO] = None,
                 show_tools: bool = False):
        super().__init__(conversation)
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.show_tools = show_tools
        self._col = 0   # chars written on the current reply line

    def on_token(self, text: str) -> None:
        super().on_token(text)
        self.out.write(text)
        self.out.flush()
        self._col += len(text)

    def on_reset_text(self) -> None:
        super().on_reset_text()
        # a terminal can't unprint; start the restarted message on a fresh line
        if self._col:
            self.out.write("\n")
            self._col = 0

    def on_tool_call(self, payload) -> None:
        super().on_tool_call(payload)
        if self.show_tools:
            self.err.write(f"[tool call] {payload}\n")

    def on_tool_result(self, payload) -> None:
        super().on_tool_result(payload)
        if self.show_tools:
            self.err.write(f"[tool result] {payload}\n")

    def on_error(self, message: str) -> None:
        super().on_error(message)
        self.err.write(f"[error] {message}\n")

    def on_finish(self) -> None:
        super().on_finish()
        if self._col:
            self.out.write("\n")
            self.out.flush()
        if self.empty:
            self.err.write(f"[error] {self.error}\n")


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog=APP_NAME, description="Stream a chat reply to the terminal")
    p.add_argument("prompt", nargs="?", help="Message to send (read from stdin when omitted)")
    p.add_argument("--agent", type=str, default=None, help="Send to an agent endpoint (prefix stream format)")
    p.add_argument("--format", type=str, default=None, help="Wire format: delta | prefix (replay / override)")
    p.add_argument("--replay", type=str, default=None, help="Decode a captured response body instead of calling the API")
    p.add_argument("--system", type=str, default=None, help="System prompt")
    p.add_argument("--show-tools", action="store_true", help="Print tool calls/results to stderr")

    p.add_argument("--chat-url", type=str, default=None, help="Chat endpoint URL")
    p.add_argument("--agents-url", type=str, default=None, help="Agents base URL")
    p.add_argument("--save-endpoints", action="store_true", help="Persist --chat-url/--agents-url to settings")

    # logging / paths
    p.add_argument("--data-dir", type=str, default=None, help="Override data directory")
    p.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING, ERROR")
    p.add_argument("--no-console-log", action="store_true", help="Disable console logging")
    p.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    return p.parse_args(argv)


def _resolve_format(args: argparse.Namespace, cfg: dict) -> WireFormat:
    if args.format:
        return WireFormat.parse(args.format)
    if args.agent:
        return WireFormat.PREFIX
    return WireFormat.parse(cfg["stream"].get("format", "delta"))


def main(argv: Optional[list] = None, stdin: Optional[TextIO] = None,
         stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None) -> int:
    args = parse_args(argv)
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    data_dir = Path(args.data_dir).expanduser().resolve() if args.data_dir else default_data_dir()
    logs_dir, log_path = log_paths(data_dir)
    cfg_path = settings_path(data_dir)
    cfg = load_settings(cfg_path)

    level = (args.log_level or cfg["logging"]["level"]).upper()
    init_logging(
        logs_dir,
        level=level,
        max_bytes=int(cfg["logging"]["max_bytes"]),
        backup_count=int(cfg["logging"]["backup_count"]),
        also_console=(not args.no_console_log),
    )
    log.info("=== %s %s starting ===", APP_NAME, __version__)
    log.debug("Platform: %s | Python: %s", platform.platform(), platform.python_version())
    log.debug("Data dir: %s | Log file: %s | Settings: %s", data_dir, log_path, cfg_path)

    if args.chat_url:
        cfg["endpoints"]["chat_url"] = args.chat_url
    if args.agents_url:
        cfg["endpoints"]["agents_url"] = args.agents_url
    if args.save_endpoints:
        for name in ("chat_url", "agents_url"):
            cfg = set_endpoint(cfg_path, cfg, name, cfg["endpoints"][name])

    try:
        wire_format = _resolve_format(args, cfg)
    except ValueError as e:
        print(str(e), file=stderr)
        return 2

    system_prompt = args.system if args.system is not None else cfg.get("system_prompt")
    conv = Conversation(system_prompt=system_prompt or None)
    sink = ConsoleSink(conv, out=stdout, err=stderr, show_tools=args.show_tools)

    if args.replay:
        replay = Path(args.replay)
        if not replay.is_file():
            print(f"No such file: {replay}", file=stderr)
            return 2
        log.info("Replaying %s as %s stream", replay, wire_format.value)
        source = IterByteSource.from_file(replay)
        session: Optional[DecoderSession] = DecoderSession(name="replay")
        try:
            session.run(source, wire_format, sink)
        finally:
            source.close()
    else:
        prompt = args.prompt if args.prompt is not None else stdin.read()
        if not prompt.strip():
            print("Nothing to send (empty prompt)", file=stderr)
            return 2
        conv.add_user(prompt)
        client = ChatClient.from_settings(cfg)
        if args.agent:
            if wire_format is not WireFormat.PREFIX:
                log.warning("Agent streams use the prefix format; ignoring --format %s", wire_format.value)
            session = client.stream_agent(args.agent, conv.messages, sink)
        else:
            if wire_format is not WireFormat.DELTA:
                log.warning("The chat endpoint streams the delta format; ignoring --format %s", wire_format.value)
            session = client.stream_chat(conv.messages, sink)

    if session is None or session.outcome == FAILED:
        sink.mark_failed()
        return 1
    if sink.empty:
        return 1
    log.info("Reply complete: %d chars, %d tool calls, %d errors",
             len(sink.text), len(sink.tool_calls), len(sink.errors))
    return 0 if not sink.errors else 1


if __name__ == "__main__":
    raise SystemExit(main())
