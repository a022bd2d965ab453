"""Site login automation and authenticated session reuse."""

from adaptivecrawl.auth.authenticator import Authenticator, AuthState, header_session
from adaptivecrawl.auth.selectors import LoginSelectors
from adaptivecrawl.auth.session_store import AuthSessionStore

__all__ = ["AuthSessionStore", "AuthState", "Authenticator", "LoginSelectors", "header_session"]
