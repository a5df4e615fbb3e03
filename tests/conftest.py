"""Shared fixtures: an in-memory resolver standing in for DNS."""

import asyncio
from typing import Dict, List, Optional

import pytest

import subresolve


class FakeResolver:
    """Answers from a dict; hosts missing from it fail like NXDOMAIN."""

    def __init__(self, answers: Dict[str, List[str]], delay: float = 0.0):
        self.answers = answers
        self.delay = delay
        self.queries: List[str] = []
        self.active = 0
        self.max_active = 0

    async def resolve(self, host: str) -> List[str]:
        self.queries.append(host)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if host not in self.answers:
                raise subresolve.ResolutionFailed(f"{host}: no such host")
            return list(self.answers[host])
        finally:
            self.active -= 1


class WildcardResolver(FakeResolver):
    """Every name under domain not listed explicitly resolves to wildcard_ips."""

    def __init__(self, domain: str, wildcard_ips: List[str],
                 answers: Optional[Dict[str, List[str]]] = None):
        super().__init__(answers or {})
        self.domain = domain
        self.wildcard_ips = wildcard_ips

    async def resolve(self, host: str) -> List[str]:
        if host not in self.answers and host.endswith("." + self.domain):
            self.queries.append(host)
            return list(self.wildcard_ips)
        return await super().resolve(host)


@pytest.fixture
def fake_resolver():
    return FakeResolver


@pytest.fixture
def wildcard_resolver():
    return WildcardResolver
