"""
Clients for the interview web API.
"""

from mock_interviewer.api.client import ConversationReply, InterviewApiClient, SessionCredential

__all__ = [
    "ConversationReply",
    "InterviewApiClient",
    "SessionCredential",
]
