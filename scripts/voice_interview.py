#!/usr/bin/env python

import argparse
import asyncio
import logging
import os
import sys

from mock_interviewer.api.client import InterviewApiClient
from mock_interviewer.config import Settings, get_settings
from mock_interviewer.errors import DeviceAccessError, RealtimeConnectionError
from mock_interviewer.media.compat import BrowserCompatibilityProbe
from mock_interviewer.media.devices import DeviceConfig, MediaStreamManager
from mock_interviewer.media.playback import AudioPlayback
from mock_interviewer.orchestrator.schemas import SessionConfig, SessionState
from mock_interviewer.orchestrator.timer import InterviewTimer
from mock_interviewer.orchestrator.voice_orchestrator import VoiceInterfaceOrchestrator
from mock_interviewer.realtime.controller import RealtimeConfig, RealtimeSessionController
from mock_interviewer.voice.segment_strategy import SegmentStrategyConfig, SegmentVoiceStrategy
from mock_interviewer.voice.stt import ApiSTT, STTConfig, WhisperSTT
from mock_interviewer.voice.tts import ApiTTS, TTSConfig
from mock_interviewer.voice.vad import VADConfig, VoiceActivityDetector


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run a mock interview voice session against the interview API")
    p.add_argument("--interview-id", required=True)
    p.add_argument(
        "--mode",
        default=os.getenv("MOCK_INTERVIEW_MODE", "realtime"),
        choices=["realtime", "segment"],
        help="Voice strategy (default: MOCK_INTERVIEW_MODE or 'realtime')",
    )
    p.add_argument(
        "--duration-minutes",
        type=int,
        default=int(os.getenv("MOCK_INTERVIEW_DURATION_MINUTES", "0") or "0"),
        help="Interview length (default: MOCK_INTERVIEW_DURATION_MINUTES or the configured default)",
    )
    p.add_argument("--job-title", default="", help="Shown in logs only")
    p.add_argument(
        "--voice",
        default=os.getenv("MOCK_INTERVIEW_VOICE", None),
        help="AI voice (default: MOCK_INTERVIEW_VOICE or the configured voice)",
    )
    p.add_argument(
        "--prior-turns",
        type=int,
        default=0,
        help="Transcript entries already recorded; skips the opening greeting when > 0",
    )
    p.add_argument("--check", action="store_true", help="Only run the compatibility probe and exit")

    # STT (segment mode)
    p.add_argument(
        "--stt",
        default=os.getenv("MOCK_INTERVIEW_STT", "api"),
        choices=["api", "whisper"],
        help="Segment-mode transcription backend (default: MOCK_INTERVIEW_STT or 'api')",
    )
    p.add_argument(
        "--stt-model",
        default=os.getenv("MOCK_INTERVIEW_STT_MODEL", "small"),
        help="faster-whisper model size (default: MOCK_INTERVIEW_STT_MODEL or 'small')",
    )
    p.add_argument(
        "--stt-device",
        default=os.getenv("MOCK_INTERVIEW_STT_DEVICE", "cpu"),
        choices=["cpu", "cuda", "auto"],
        help="STT device (default: MOCK_INTERVIEW_STT_DEVICE or 'cpu')",
    )
    p.add_argument(
        "--tts-enabled",
        default=os.getenv("VOICE_TTS_ENABLED", "true"),
        help="Speak interviewer replies in segment mode (default: VOICE_TTS_ENABLED or true)",
    )
    return p


def _flag(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _build_strategy(args, settings: Settings, api: InterviewApiClient, playback: AudioPlayback, timer: InterviewTimer):
    if args.mode == "realtime":
        return RealtimeSessionController(
            args.interview_id,
            api=api,
            config=RealtimeConfig.from_settings(settings, voice=args.voice),
            playback=playback,
        )

    if args.stt == "whisper":
        stt = WhisperSTT(STTConfig(model_size=args.stt_model, device=args.stt_device))
    else:
        stt = ApiSTT(api, args.interview_id)
    base = SegmentStrategyConfig.from_settings(settings)
    return SegmentVoiceStrategy(
        args.interview_id,
        api=api,
        stt=stt,
        tts=ApiTTS(api, args.interview_id, TTSConfig(voice=args.voice or settings.tts_voice)),
        playback=playback,
        config=SegmentStrategyConfig(
            sample_rate=base.sample_rate,
            min_transcript_chars=base.min_transcript_chars,
            tts_enabled=_flag(args.tts_enabled),
        ),
        vad=VoiceActivityDetector(VADConfig.from_settings(settings), sample_rate=base.sample_rate),
        time_remaining=timer.remaining_seconds,
    )


async def _read_commands(orchestrator: VoiceInterfaceOrchestrator) -> None:
    while orchestrator.is_active:
        line = await asyncio.to_thread(input, "[Voice] Enter=pause/resume, q=end ... ")
        if not orchestrator.is_active:
            return
        if (line or "").strip().lower() == "q":
            await orchestrator.end()
            return
        if orchestrator.state is SessionState.PAUSED:
            await orchestrator.resume()
            print(f"[Voice] resumed, {orchestrator.timer.format_remaining()} left", flush=True)
        else:
            await orchestrator.pause()
            print(f"[Voice] paused, {orchestrator.timer.format_remaining()} left", flush=True)


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    report = BrowserCompatibilityProbe().check(require_realtime=args.mode == "realtime")
    if args.check or not report.is_supported:
        print(report.model_dump_json(indent=2))
        return 0 if report.is_supported else 1

    duration_minutes = args.duration_minutes or settings.default_duration_minutes
    session_config = SessionConfig(
        interview_id=args.interview_id,
        duration_seconds=duration_minutes * 60,
        job_title=args.job_title,
        voice=args.voice or settings.realtime_voice,
    )
    sample_rate = settings.sample_rate if args.mode == "realtime" else settings.segment_sample_rate

    api = InterviewApiClient()
    playback = AudioPlayback()
    media = MediaStreamManager(DeviceConfig.from_settings(settings, sample_rate=sample_rate))
    timer = InterviewTimer(session_config.duration_seconds)
    strategy = _build_strategy(args, settings, api, playback, timer)

    orchestrator = VoiceInterfaceOrchestrator(
        session_config,
        strategy=strategy,
        media=media,
        api=api,
        timer=timer,
        hold_timer_while_processing=args.mode == "segment" and settings.pause_timer_while_processing,
        prior_turns=args.prior_turns,
    )

    commands: asyncio.Task | None = None
    try:
        await orchestrator.start()
        commands = asyncio.create_task(_read_commands(orchestrator))
        outcome = await orchestrator.wait_until_ended()
    except (DeviceAccessError, RealtimeConnectionError) as e:
        print(f"[Voice] could not start the session: {e}", file=sys.stderr)
        outcome = await orchestrator.wait_until_ended()
    except KeyboardInterrupt:
        outcome = await orchestrator.end()
    finally:
        if commands is not None:
            commands.cancel()
        await playback.close()
        await api.close()

    print(outcome.model_dump_json(indent=2, exclude={"transcript"}))
    return 0 if outcome.error is None else 1


if __name__ == "__main__":
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        raise SystemExit(0)
