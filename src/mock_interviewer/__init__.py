"""
Mock Interviewer voice session package.

Drives one bidirectional voice session between the local microphone/speaker
and a remote AI interviewer, with a wall-clock interview timer and an
append-only transcript.
"""

__version__ = "0.1.0"
