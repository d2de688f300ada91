#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_http.py — HTTP client used for manifest and part fetches

HttpClient wraps a requests.Session with a fixed timeout. A client factory
is any callable `factory(timeout_override=None) -> HttpClient`; the
pipeline asks for a fresh client per part so each part gets its own
size-derived timeout.
"""

from __future__ import annotations
from typing import Callable, Optional

import requests

from hznfetch_config import DEFAULT_CONFIG
from hznfetch_logger import get_logger

LOG = get_logger("http")


class HttpClient:
    def __init__(self, timeout: Optional[float] = None, verify_tls: bool = True,
                 user_agent: Optional[str] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = verify_tls
        if user_agent:
            self.session.headers["User-Agent"] = user_agent

    def send(self, request: requests.Request) -> requests.Response:
        """Send a request; the body is streamed, callers must close the response."""
        prepared = self.session.prepare_request(request)
        LOG.debug("%s %s (timeout=%s)", prepared.method, prepared.url, self.timeout)
        return self.session.send(prepared, stream=True, timeout=self.timeout)

    def close(self):
        self.session.close()


ClientFactory = Callable[..., HttpClient]


def make_client_factory(timeout: Optional[float] = None, verify_tls: Optional[bool] = None,
                        user_agent: Optional[str] = None) -> ClientFactory:
    """Build a factory with defaults taken from config values (or DEFAULT_CONFIG)."""
    http_defaults = DEFAULT_CONFIG["http"]
    base_timeout = http_defaults["timeout"] if timeout is None else timeout
    verify = http_defaults["verify_tls"] if verify_tls is None else verify_tls
    agent = user_agent or http_defaults["user_agent"]

    def factory(timeout_override: Optional[float] = None) -> HttpClient:
        t = base_timeout if timeout_override is None else timeout_override
        return HttpClient(timeout=t, verify_tls=verify, user_agent=agent)

    return factory


default_client_factory = make_client_factory()

__all__ = ["HttpClient", "ClientFactory", "make_client_factory", "default_client_factory"]
