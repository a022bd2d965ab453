"""
Ordered CSS selector heuristics for locating login form elements.

Earlier entries win. Configured field names are always tried before the
generic fallbacks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


@dataclass
class LoginSelectors:
    login_triggers: List[str] = field(
        default_factory=lambda: [
            'button:has-text("Login")',
            'button:has-text("Sign in")',
            'a:has-text("Login")',
            'a:has-text("Sign in")',
            '[class*="login"]',
            '[id*="login"]',
            'button:has-text("Sign In")',
            'a:has-text("Sign In")',
            'button:has-text("Log in")',
            'a:has-text("Log in")',
            ".login-btn",
            ".signin-btn",
            ".auth-btn",
            '[data-toggle="modal"]',
            '[data-bs-toggle="modal"]',
            'button[class*="login" i]',
            'a[class*="login" i]',
            'button[id*="login" i]',
            'a[id*="login" i]',
        ]
    )
    modal_containers: List[str] = field(
        default_factory=lambda: [
            ".modal",
            '[role="dialog"]',
            ".popup",
            ".overlay",
            ".login-modal",
            ".auth-modal",
            ".signin-modal",
        ]
    )
    username_fields: List[str] = field(
        default_factory=lambda: [
            'input[type="email"]',
            'input[name="email"]',
            'input[name="login"]',
            'input[name="user"]',
            'input[name="username"]',
            'input[name="userid"]',
            'input[name="user_id"]',
            'input[name="loginid"]',
            'input[name="account"]',
            'input[placeholder*="username" i]',
            'input[placeholder*="email" i]',
            'input[placeholder*="user" i]',
            'input[placeholder*="login" i]',
            'input[aria-label*="username" i]',
            'input[aria-label*="email" i]',
            'input[aria-label*="user" i]',
            'input[autocomplete="username"]',
            'input[autocomplete="email"]',
            'input[type="text"]',
            'form input[type="text"]:first-of-type',
            'form input:not([type="password"]):not([type="submit"]):not([type="button"]):not([type="hidden"]):first-of-type',
            '.modal input[type="text"]',
            '.modal input[type="email"]',
            '[role="dialog"] input[type="text"]',
            '[role="dialog"] input[type="email"]',
        ]
    )
    password_fields: List[str] = field(
        default_factory=lambda: [
            'input[type="password"]',
            'input[name="pass"]',
            'input[name="password"]',
            'input[name="pwd"]',
            'input[name="passwd"]',
            'input[placeholder*="password" i]',
            'input[placeholder*="pass" i]',
            'input[aria-label*="password" i]',
            'input[autocomplete="current-password"]',
            'input[autocomplete="password"]',
            '.modal input[type="password"]',
            '[role="dialog"] input[type="password"]',
        ]
    )
    submit_buttons: List[str] = field(
        default_factory=lambda: [
            'button:has-text("Sign in")',
            'button:has-text("Sign In")',
            'button:has-text("Login")',
            'input[type="submit"]',
            'button[type="submit"]',
            ".btn-primary",
            ".login-btn",
        ]
    )
    error_indicators: List[str] = field(
        default_factory=lambda: [".error", ".alert-danger", ".login-error", '[class*="error"]', '[class*="invalid"]']
    )

    @staticmethod
    def _named(field_name: str) -> List[str]:
        return [f'input[name="{field_name}"]', f'input[id="{field_name}"]']

    def username_candidates(self, field_name: str) -> List[str]:
        return _dedupe(self._named(field_name) + self.username_fields)

    def password_candidates(self, field_name: str) -> List[str]:
        return _dedupe(self._named(field_name) + self.password_fields)

    def submit_candidates(self, submit_selector: str) -> List[str]:
        return _dedupe([submit_selector] + self.submit_buttons)


def _dedupe(selectors: List[str]) -> List[str]:
    seen = set()
    result = []
    for selector in selectors:
        if selector and selector not in seen:
            seen.add(selector)
            result.append(selector)
    return result
