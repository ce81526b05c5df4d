import pytest


def test_voice_runner_env_defaults_are_used(monkeypatch):
    monkeypatch.setenv("MOCK_INTERVIEW_MODE", "segment")
    monkeypatch.setenv("MOCK_INTERVIEW_DURATION_MINUTES", "10")
    monkeypatch.setenv("MOCK_INTERVIEW_VOICE", "alloy")
    monkeypatch.setenv("MOCK_INTERVIEW_STT", "whisper")
    monkeypatch.setenv("MOCK_INTERVIEW_STT_MODEL", "base")
    monkeypatch.setenv("MOCK_INTERVIEW_STT_DEVICE", "cpu")
    monkeypatch.setenv("VOICE_TTS_ENABLED", "0")

    from scripts.voice_interview import build_parser

    args = build_parser().parse_args(["--interview-id", "iv-42"])
    assert args.interview_id == "iv-42"
    assert args.mode == "segment"
    assert args.duration_minutes == 10
    assert args.voice == "alloy"
    assert args.stt == "whisper"
    assert args.stt_model == "base"
    assert args.stt_device == "cpu"
    assert args.tts_enabled == "0"
    assert args.prior_turns == 0


def test_voice_runner_defaults_without_env(monkeypatch):
    for name in ("MOCK_INTERVIEW_MODE", "MOCK_INTERVIEW_DURATION_MINUTES", "MOCK_INTERVIEW_VOICE"):
        monkeypatch.delenv(name, raising=False)

    from scripts.voice_interview import build_parser

    args = build_parser().parse_args(["--interview-id", "iv-1", "--prior-turns", "3"])
    assert args.mode == "realtime"
    assert args.duration_minutes == 0
    assert args.voice is None
    assert args.prior_turns == 3


def test_voice_runner_requires_interview_id():
    from scripts.voice_interview import build_parser

    with pytest.raises(SystemExit):
        build_parser().parse_args([])


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), ("true", True), (" Yes ", True), ("on", True), ("0", False), ("false", False), ("", False)],
)
def test_flag_parsing(raw, expected):
    from scripts.voice_interview import _flag

    assert _flag(raw) is expected


def test_segment_mode_builds_segment_strategy():
    from mock_interviewer.config import get_settings
    from mock_interviewer.orchestrator.timer import InterviewTimer
    from mock_interviewer.voice.segment_strategy import SegmentVoiceStrategy
    from scripts.voice_interview import _build_strategy, build_parser

    args = build_parser().parse_args(
        ["--interview-id", "iv-1", "--mode", "segment", "--stt", "api", "--tts-enabled", "false"]
    )
    strategy = _build_strategy(args, get_settings(), api=object(), playback=object(), timer=InterviewTimer(60))
    assert isinstance(strategy, SegmentVoiceStrategy)


def test_realtime_mode_builds_realtime_controller():
    from mock_interviewer.config import get_settings
    from mock_interviewer.orchestrator.timer import InterviewTimer
    from mock_interviewer.realtime.controller import RealtimeSessionController
    from scripts.voice_interview import _build_strategy, build_parser

    args = build_parser().parse_args(["--interview-id", "iv-1", "--mode", "realtime"])
    strategy = _build_strategy(args, get_settings(), api=object(), playback=object(), timer=InterviewTimer(60))
    assert isinstance(strategy, RealtimeSessionController)
