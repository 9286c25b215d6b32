import io

import main
from scheduler import ManualScheduler


def test_parse_args_defaults() -> None:
    args = main.parse_args([])
    assert args.engine == "stockfish"
    assert args.preset is None
    assert args.no_automation is False


def test_parse_args_options() -> None:
    args = main.parse_args(["--engine", "stockfish -q", "--preset", "rapid", "--log-level", "DEBUG"])
    assert args.engine == "stockfish -q"
    assert args.preset == "rapid"
    assert args.log_level == "DEBUG"


def test_invalid_config_file_exits_with_usage_error(tmp_path) -> None:
    path = tmp_path / "bad.json"
    path.write_text('{"max_retries": 0}')
    assert main.main(["--config", str(path)]) == 2


class RecordingOrchestrator:
    def __init__(self) -> None:
        self.messages = []

    def on_transport_message(self, raw) -> None:
        self.messages.append(raw)


def test_read_transport_posts_lines_then_stop() -> None:
    scheduler = ManualScheduler()
    orchestrator = RecordingOrchestrator()
    stream = io.StringIO('{"t":"fen","d":{"fen":"8/8/8/8/8/8/8/8 w - - 0 1"}}\n\n{"t":"newgame"}\n')
    main.read_transport(stream, scheduler, orchestrator)
    scheduler._running = True
    scheduler.run_pending()
    assert orchestrator.messages == [
        '{"t":"fen","d":{"fen":"8/8/8/8/8/8/8/8 w - - 0 1"}}',
        '{"t":"newgame"}',
    ]
    assert scheduler.running is False
