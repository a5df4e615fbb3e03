#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
subresolve.py

- Cleans a list of candidate subdomains against live DNS
- Fully async A lookups via dnspython's dns.asyncresolver
- Spreads queries across the configured resolvers, retries on timeouts
- Wildcard detection with random UUID labels filters false positives
- Fixed pool of workers between two bounded queues (backpressure)

Usage:
  python3 subresolve.py -d example.com -l subs.txt -o resolved.txt

Requires:
  pip install dnspython
"""
import argparse
import asyncio
import contextlib
import logging
import os
import random
import sys
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from time import monotonic
from typing import Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

import dns.asyncresolver as aresolver
import dns.exception
import dns.resolver as dresolver  # exceptions here

log = logging.getLogger("subresolve")

# --------- Resolver pool ---------
DEFAULT_RESOLVERS = ["1.1.1.1", "8.8.8.8", "8.8.4.4"]
DEFAULT_PORT = 53

# ---------- Tunables ----------
DEFAULT_THREADS = 10
DEFAULT_RETRIES = 5
DEFAULT_TIMEOUT = 2.0
QUEUE_SIZE = 100
WILDCARD_PROBES = 4
RES_FAIL_LIMIT = 5
RES_COOLDOWN = 30
# ------------------------------

BANNER = "[#] subresolve : subdomains cleaning tool"


class ResolutionFailed(Exception):
    """A lookup produced no answer (NXDOMAIN, timeout, SERVFAIL, ...)."""


class FatalError(Exception):
    """Setup failure that ends the run before any work is done."""


# --------------------------------------------------------------------
# Resolver adapter
# --------------------------------------------------------------------

@dataclass(frozen=True)
class ResolverConfig:
    nameservers: Tuple[str, ...] = tuple(DEFAULT_RESOLVERS)
    retries: int = DEFAULT_RETRIES
    timeout: float = DEFAULT_TIMEOUT


def split_endpoint(endpoint: str) -> Tuple[str, int]:
    """'1.2.3.4' -> ('1.2.3.4', 53), '1.2.3.4:5353' -> ('1.2.3.4', 5353).

    Anything with more than one colon is an IPv6 address and keeps port 53.
    """
    endpoint = endpoint.strip()
    if endpoint.count(':') == 1:
        host, _, port = endpoint.partition(':')
        try:
            return host, int(port)
        except ValueError:
            raise FatalError(f"invalid resolver port in {endpoint!r}") from None
    return endpoint, DEFAULT_PORT


def make_resolver(ns: str, timeout: float) -> aresolver.Resolver:
    host, port = split_endpoint(ns)
    r = aresolver.Resolver(configure=False)
    r.port = port  # before nameservers, which bind the port on assignment
    r.nameservers = [host]
    r.timeout = timeout
    r.lifetime = timeout
    r.retry_servfail = False  # SERVFAIL surfaces as NoNameservers
    return r


class Resolver:
    """A-record lookups over a pool of upstream resolvers.

    Each attempt goes to a random endpoint, skipping endpoints that are
    cooling down after RES_FAIL_LIMIT consecutive failures. Only timeouts
    are retried; every other failure is reported at once.
    """

    def __init__(self, config: ResolverConfig):
        if not config.nameservers:
            raise FatalError("no resolvers configured")
        self.config = config
        try:
            self._resolvers = [make_resolver(ns, config.timeout) for ns in config.nameservers]
        except ValueError as e:
            raise FatalError(f"invalid resolver: {e}") from e
        self._state: Dict[int, Dict[str, float]] = {
            i: {'fails': 0, 'cool_until': 0.0} for i in range(len(self._resolvers))
        }

    def _mark(self, idx: int, ok: bool):
        st = self._state[idx]
        if ok:
            st['fails'] = max(0, st['fails'] - 1)
            return
        st['fails'] += 1
        if st['fails'] >= RES_FAIL_LIMIT:
            st['cool_until'] = monotonic() + RES_COOLDOWN
            st['fails'] = 0
            log.debug("resolver %s cooling down for %ss",
                      self.config.nameservers[idx], RES_COOLDOWN)

    def _pick(self) -> int:
        n = len(self._resolvers)
        start = random.randrange(n)
        now = monotonic()
        for off in range(n):
            idx = (start + off) % n
            if now >= self._state[idx]['cool_until']:
                return idx
        return start

    async def _attempt(self, host: str, idx: int) -> List[str]:
        lifetime = self.config.timeout
        try:
            ans = await asyncio.wait_for(
                self._resolvers[idx].resolve(host, 'A', lifetime=lifetime),
                timeout=lifetime + 0.5
            )
        except dresolver.NoAnswer:
            # NOERROR without A records
            return []
        return [rd.address for rd in ans if getattr(rd, 'address', None)]

    async def resolve(self, host: str) -> List[str]:
        """Return the A addresses of host, or raise ResolutionFailed."""
        if not host:
            raise ResolutionFailed("empty hostname")
        attempts = self.config.retries + 1
        for attempt in range(1, attempts + 1):
            idx = self._pick()
            try:
                addrs = await self._attempt(host, idx)
            except (asyncio.TimeoutError, dns.exception.Timeout) as e:
                self._mark(idx, False)
                if attempt < attempts:
                    log.debug("timeout resolving %s via %s (attempt %d/%d)",
                              host, self.config.nameservers[idx], attempt, attempts)
                    continue
                raise ResolutionFailed(f"{host}: timed out after {attempts} attempts") from e
            except dresolver.NXDOMAIN as e:
                self._mark(idx, True)
                raise ResolutionFailed(f"{host}: no such host") from e
            except (dns.exception.DNSException, OSError, ValueError) as e:
                self._mark(idx, False)
                raise ResolutionFailed(f"{host}: {e}") from e
            self._mark(idx, True)
            return addrs
        raise ResolutionFailed(f"{host}: no attempts made")


def load_resolvers(comma_list: Optional[str] = None,
                   list_file: Optional[str] = None) -> List[str]:
    """-r wins over -rL, which wins over DEFAULT_RESOLVERS."""
    if comma_list:
        return [r.strip() for r in comma_list.split(',') if r.strip()]
    if list_file:
        try:
            with open(list_file, 'r', encoding='utf-8') as f:
                return [line.strip() for line in f if line.strip()]
        except OSError as e:
            raise FatalError(f"cannot read resolver list {list_file}: {e}") from e
    return list(DEFAULT_RESOLVERS)


# --------------------------------------------------------------------
# Wildcard detection
# --------------------------------------------------------------------

@dataclass(frozen=True)
class WildcardBaseline:
    active: bool = False
    addresses: FrozenSet[str] = frozenset()

    def matches(self, addrs: Iterable[str]) -> bool:
        return self.active and any(a in self.addresses for a in addrs)


NO_WILDCARD = WildcardBaseline()


def new_label() -> str:
    # uuid4 draws from os.urandom; failures there must end the run
    return str(uuid.uuid4())


def fqdn(label: str, parent: str) -> str:
    return f"{label.strip('.').lower()}.{parent.strip('.').lower()}"


async def detect_wildcard(domain: str, resolver, probes: int = WILDCARD_PROBES,
                          label_factory: Callable[[], str] = new_label) -> WildcardBaseline:
    """Probe random labels under domain; the first one that resolves wins."""
    if not domain.strip('.'):
        log.debug("no domain given, skipping wildcard detection")
        return NO_WILDCARD

    labels = [label_factory() for _ in range(probes)]
    for label in labels:
        name = fqdn(label, domain)
        try:
            addrs = await resolver.resolve(name)
        except ResolutionFailed as e:
            log.debug("wildcard probe %s: %s", name, e)
            continue
        if addrs:
            return WildcardBaseline(True, frozenset(addrs))
    return NO_WILDCARD


# --------------------------------------------------------------------
# Job pipeline
# --------------------------------------------------------------------

class Outcome(Enum):
    NO_RECORDS = "no-records"
    WILDCARD_MATCH = "wildcard"
    CONFIRMED = "confirmed"


@dataclass
class Job:
    host: str
    outcome: Optional[Outcome] = None
    address: Optional[str] = None


def classify(addrs: List[str], baseline: WildcardBaseline) -> Tuple[Outcome, Optional[str]]:
    if not addrs:
        return Outcome.NO_RECORDS, None
    if baseline.matches(addrs):
        return Outcome.WILDCARD_MATCH, None
    # first address is the representative result
    return Outcome.CONFIRMED, addrs[0]


def print_confirmed(job: Job):
    print(f"[+] {job.host} : {job.address}", flush=True)


_DONE = None


@dataclass
class Pipeline:
    """Producer -> N workers -> collector over two bounded queues.

    The resolver and baseline are shared read-only by all workers; the
    confirmed list and stats are written only by the collector.
    """
    resolver: object
    baseline: WildcardBaseline = NO_WILDCARD
    threads: int = DEFAULT_THREADS
    queue_size: int = QUEUE_SIZE
    on_confirmed: Optional[Callable[[Job], None]] = print_confirmed
    confirmed: List[str] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=lambda: {
        'attempted': 0, 'confirmed': 0, 'wildcard': 0, 'no-records': 0})

    def __post_init__(self):
        if self.threads < 1:
            raise ValueError(f"thread count must be at least 1, got {self.threads}")

    async def produce(self, lines: Iterable[str], jobs: asyncio.Queue):
        for line in lines:
            await jobs.put(Job(line))
        for _ in range(self.threads):
            await jobs.put(_DONE)

    async def consume(self, jobs: asyncio.Queue, results: asyncio.Queue):
        while True:
            job = await jobs.get()
            if job is _DONE:
                return
            try:
                addrs = await self.resolver.resolve(job.host)
            except ResolutionFailed as e:
                log.debug("%s: %s", job.host, e)
                addrs = []
            job.outcome, job.address = classify(addrs, self.baseline)
            await results.put(job)

    async def collect(self, results: asyncio.Queue):
        while True:
            job = await results.get()
            if job is _DONE:
                return
            self.stats['attempted'] += 1
            self.stats[job.outcome.value] += 1
            if job.outcome is not Outcome.CONFIRMED:
                log.debug("dropped %s (%s)", job.host, job.outcome.value)
                continue
            self.confirmed.append(job.host)
            if self.on_confirmed is not None:
                self.on_confirmed(job)

    async def run(self, lines: Iterable[str]) -> List[str]:
        jobs: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        results: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)

        workers = [asyncio.create_task(self.consume(jobs, results))
                   for _ in range(self.threads)]
        collector = asyncio.create_task(self.collect(results))
        producer = asyncio.create_task(self.produce(lines, jobs))

        try:
            await producer
            await asyncio.gather(*workers)
            await results.put(_DONE)
            await collector
        finally:
            for task in (producer, collector, *workers):
                task.cancel()
        return self.confirmed


# --------------------------------------------------------------------
# Input / output
# --------------------------------------------------------------------

def read_candidates(fh) -> Iterator[str]:
    """Yield each line with only its terminator ('\\n' or '\\r\\n') removed."""
    for line in fh:
        if line.endswith('\n'):
            line = line[:-1]
        if line.endswith('\r'):
            line = line[:-1]
        yield line


def open_sink(path: str):
    try:
        fd = os.open(path, os.O_APPEND | os.O_WRONLY | os.O_CREAT, 0o600)
    except OSError as e:
        raise FatalError(f"cannot open output file {path}: {e}") from e
    return os.fdopen(fd, 'a', encoding='utf-8')


def write_results(fh, hosts: Iterable[str]) -> int:
    """Append hosts one per line; stops at the first write error."""
    written = 0
    try:
        for host in hosts:
            fh.write(host + '\n')
            written += 1
        fh.flush()
    except OSError as e:
        log.error("writing results failed after %d line(s): %s", written, e)
    return written


# --------------------------------------------------------------------
# CLI
# --------------------------------------------------------------------

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='subresolve',
        description='Resolve a list of subdomains and drop dead and wildcard entries')
    parser.add_argument('-d', dest='domain', default='',
                        help='Domain to resolve subdomains of (wildcard detection)')
    parser.add_argument('-l', dest='list', default='',
                        help='File to resolve subdomains from')
    parser.add_argument('-o', dest='output', default='',
                        help='File to output subdomains to')
    parser.add_argument('-t', dest='threads', type=int, default=DEFAULT_THREADS,
                        help=f'Number of threads to use (default: {DEFAULT_THREADS})')
    parser.add_argument('-r', dest='resolvers', default='',
                        help='Comma-separated list of resolvers to use')
    parser.add_argument('-rL', dest='resolver_list', default='',
                        help='File containing list of resolvers to use')
    parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                        help=f'Per-query timeout in seconds (default: {DEFAULT_TIMEOUT})')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Log every lookup decision')
    return parser.parse_args(argv)


def setup_logging(verbose: bool = False):
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))
    log.handlers[:] = [handler]
    log.setLevel(logging.DEBUG if verbose else logging.INFO)
    log.propagate = False


async def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if not args.list:
        sys.stderr.write("[!] No Input file specified !\n")
        return 1
    if not args.output:
        sys.stderr.write("[!] No Output file specified !\n")
        return 1
    if args.threads < 1:
        sys.stderr.write("[!] Thread count must be at least 1\n")
        return 1

    sys.stderr.write(BANNER + "\n")
    sys.stderr.flush()

    with contextlib.ExitStack() as stack:
        try:
            config = ResolverConfig(
                nameservers=tuple(load_resolvers(args.resolvers, args.resolver_list)),
                timeout=args.timeout,
            )
            resolver = Resolver(config)
            try:
                source = stack.enter_context(
                    open(args.list, 'r', encoding='utf-8', errors='replace', newline='\n'))
            except OSError as e:
                raise FatalError(f"cannot open input file {args.list}: {e}") from e
            sink = stack.enter_context(open_sink(args.output))
            try:
                baseline = await detect_wildcard(args.domain, resolver)
            except (OSError, NotImplementedError) as e:
                raise FatalError(f"secure random source unavailable: {e}") from e
        except FatalError as e:
            sys.stderr.write(f"[!] {e}\n")
            return 1

        log.debug("resolvers: %s", ', '.join(config.nameservers))
        if baseline.active:
            log.warning("Wildcard IPs found at %s. IP(s) %s",
                        args.domain, ', '.join(sorted(baseline.addresses)))

        start_time = time.perf_counter()
        pipeline = Pipeline(resolver, baseline, threads=args.threads)
        confirmed = await pipeline.run(read_candidates(source))
        write_results(sink, confirmed)

    duration = max(1e-6, time.perf_counter() - start_time)
    stats = pipeline.stats
    log.info("duration=%.2fs attempted=%d confirmed=%d wildcard=%d no-records=%d avg_per_sec=%.2f",
             duration, stats['attempted'], stats['confirmed'], stats['wildcard'],
             stats['no-records'], stats['attempted'] / duration)
    return 0


def run():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == '__main__':
    run()
