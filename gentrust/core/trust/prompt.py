#!/usr/bin/env python3
"""
gentrust Core Trust — Console Prompt
======================================
Interactive DecisionSource for terminals. Shows the creator, the risk
assessment and the operations a template wants to run, then reads one
answer from the input stream.

One daemon reader thread feeds lines to a queue so the configured timeout
holds while readline() is blocked. On timeout DecisionTimeout is raised and
the workflow applies its default; the reader keeps running, and a line that
arrives late is discarded by the next prompt instead of answering it.
EOF, Ctrl-C and 'c' raise DecisionCancelled.

Import from: gentrust.core.trust.prompt
"""

from __future__ import annotations

import logging
import queue
import sys
import threading
import time
from typing import Optional, Sequence

from gentrust.console import Colors, heading
from gentrust.core.trust.decision import DecisionRequest, DecisionSource, describe_choice
from gentrust.core.types import DecisionCancelled, DecisionChoice, DecisionTimeout, RiskLevel

__all__ = ['ConsolePrompt', 'CHOICE_KEYS']

logger = logging.getLogger("gentrust.core.trust.prompt")

CHOICE_KEYS = {
    'a': DecisionChoice.APPROVE_PERMANENT,
    'o': DecisionChoice.APPROVE_ONCE,
    'd': DecisionChoice.DENY,
    'b': DecisionChoice.BLOCK,
}
CANCEL_KEYS = {'c', 'cancel', 'q', 'quit'}

MAX_ATTEMPTS = 3
MAX_LISTED_OPERATIONS = 15

_EOF = object()


class ConsolePrompt(DecisionSource):
    """Terminal prompt. Streams default to stdin / stderr so --json output
    on stdout stays clean."""

    def __init__(self, stdin=None, stdout=None):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stderr
        self._lines: "queue.Queue" = queue.Queue()
        self._reader: Optional[threading.Thread] = None
        self._timed_out = False

    # ---- Output ----

    def _print(self, text: str = ""):
        print(text, file=self.stdout)
        self.stdout.flush()

    def _risk_label(self, risk: RiskLevel) -> str:
        color = {RiskLevel.HIGH: Colors.red, RiskLevel.MEDIUM: Colors.yellow,
                 RiskLevel.LOW: Colors.green}[risk]
        return color(risk.value.upper())

    def _show(self, request: DecisionRequest):
        heading(f"Unknown template creator: {request.creator_id}", out=self.stdout)
        names = [t.name or t.identifier for t in request.templates]
        self._print(f"  Templates: {', '.join(names)}")
        self._print(f"  Risk:      {self._risk_label(request.risk)}")
        for reason in request.reasons:
            self._print(f"    - {reason}")
        ops = request.operations
        if ops:
            self._print("  Operations:")
            for op in ops[:MAX_LISTED_OPERATIONS]:
                self._print(f"    {Colors.dim(op.describe())}")
            if len(ops) > MAX_LISTED_OPERATIONS:
                self._print(f"    ... and {len(ops) - MAX_LISTED_OPERATIONS} more")

    def _menu(self) -> str:
        return "  " + "  ".join(f"[{k}] {describe_choice(c)}" for k, c in CHOICE_KEYS.items()) \
            + "  [c] Cancel"

    # ---- Input ----

    def _start_reader(self):
        if self._reader is None:
            self._reader = threading.Thread(target=self._pump, name="gentrust-prompt",
                                            daemon=True)
            self._reader.start()

    def _pump(self):
        while True:
            try:
                line = self.stdin.readline()
            except (OSError, ValueError):
                line = ''
            if line == '':
                self._lines.put(_EOF)
                return
            self._lines.put(line)

    def _discard_pending(self):
        """Drop lines typed while an earlier prompt had already timed out."""
        while True:
            try:
                value = self._lines.get_nowait()
            except queue.Empty:
                return
            if value is _EOF:
                self._lines.put(_EOF)
                return
            logger.debug("Discarded late answer %r", value.strip())

    def _read_line(self, timeout: float) -> Optional[str]:
        """One line from stdin, None on EOF. Raises DecisionTimeout."""
        self._start_reader()
        try:
            value = self._lines.get(timeout=max(timeout, 0.0))
        except queue.Empty:
            self._timed_out = True
            raise DecisionTimeout(f"No answer within {timeout:g}s") from None
        if value is _EOF:
            # later reads see EOF too
            self._lines.put(_EOF)
            return None
        return value

    def _ask(self, question: str, timeout: float) -> str:
        deadline = time.monotonic() + timeout
        if self._timed_out:
            self._discard_pending()
            self._timed_out = False
        self.stdout.write(question)
        self.stdout.flush()
        try:
            line = self._read_line(deadline - time.monotonic())
        except KeyboardInterrupt:
            raise DecisionCancelled("Interrupted") from None
        if line is None:
            raise DecisionCancelled("End of input")
        return line.strip().lower()

    def _choose(self, timeout: float) -> DecisionChoice:
        deadline = time.monotonic() + timeout
        self._print(self._menu())
        for _ in range(MAX_ATTEMPTS):
            answer = self._ask("  Choice: ", deadline - time.monotonic())
            if answer in CANCEL_KEYS:
                raise DecisionCancelled("Cancelled by user")
            if answer in CHOICE_KEYS:
                return CHOICE_KEYS[answer]
            for choice in CHOICE_KEYS.values():
                if answer == choice.value:
                    return choice
            self._print(Colors.yellow(f"  Unrecognized answer {answer!r}"))
        raise DecisionCancelled("Too many invalid answers")

    # ---- DecisionSource ----

    def decide(self, request: DecisionRequest, timeout: float) -> DecisionChoice:
        self._show(request)
        return self._choose(timeout)

    def decide_bulk(self, requests: Sequence[DecisionRequest],
                    timeout: float) -> Optional[DecisionChoice]:
        deadline = time.monotonic() + timeout
        heading(f"{len(requests)} unknown template creators", out=self.stdout)
        for request in requests:
            self._print(f"  {request.creator_id:<40} {self._risk_label(request.risk)}")
        answer = self._ask("  Apply one decision to all of them? [y/N] ",
                           deadline - time.monotonic())
        if answer not in ('y', 'yes'):
            return None
        return self._choose(deadline - time.monotonic())
