"""
gentrust — Console prompt tests (stdin/stdout injected, no terminal needed).
"""

import io
import os
import threading
import time

import pytest

from gentrust.core.creator import parse_creator
from gentrust.core.trust.decision import DecisionRequest
from gentrust.core.trust.prompt import ConsolePrompt
from gentrust.core.types import DecisionCancelled, DecisionChoice, DecisionTimeout, RiskLevel

from conftest import make_template


def request(creator="npm:left-pad"):
    template = make_template(creator, ("sh", "npm install"), ("add", "src/a.js", ""),
                             name="starter")
    return DecisionRequest(creator=parse_creator(creator), templates=(template,),
                           risk=RiskLevel.HIGH, reasons=("executes SHELL_EXECUTE npm install",),
                           has_history=False)


def prompt(answers):
    out = io.StringIO()
    return ConsolePrompt(stdin=io.StringIO(answers), stdout=out), out


class TestDecide:

    @pytest.mark.parametrize("answer,expected", [
        ("a\n", DecisionChoice.APPROVE_PERMANENT),
        ("O\n", DecisionChoice.APPROVE_ONCE),
        ("d\n", DecisionChoice.DENY),
        ("b\n", DecisionChoice.BLOCK),
        ("approve-once\n", DecisionChoice.APPROVE_ONCE),
        ("what\na\n", DecisionChoice.APPROVE_PERMANENT),
    ])
    def test_answers(self, answer, expected):
        console, _ = prompt(answer)
        assert console.decide(request(), timeout=5) == expected

    def test_shows_request(self):
        console, out = prompt("a\n")
        console.decide(request(), timeout=5)
        text = out.getvalue()
        assert "npm:left-pad" in text
        assert "starter" in text
        assert "HIGH" in text
        assert "SHELL_EXECUTE npm install" in text

    @pytest.mark.parametrize("answer", ["c\n", "quit\n", "", "x\ny\nz\n"])
    def test_cancelled(self, answer):
        console, _ = prompt(answer)
        with pytest.raises(DecisionCancelled):
            console.decide(request(), timeout=5)

    def test_timeout(self):
        read_fd, write_fd = os.pipe()
        stdin = os.fdopen(read_fd, 'r')
        try:
            console = ConsolePrompt(stdin=stdin, stdout=io.StringIO())
            with pytest.raises(DecisionTimeout):
                console.decide(request(), timeout=0.2)
        finally:
            os.close(write_fd)

    def test_answer_after_timeout_reaches_next_prompt(self):
        read_fd, write_fd = os.pipe()
        stdin = os.fdopen(read_fd, 'r')
        try:
            console = ConsolePrompt(stdin=stdin, stdout=io.StringIO())
            with pytest.raises(DecisionTimeout):
                console.decide(request(), timeout=0.2)
            threading.Timer(0.2, os.write, args=(write_fd, b"b\n")).start()
            assert console.decide(request(), timeout=5) == DecisionChoice.BLOCK
        finally:
            os.close(write_fd)

    def test_late_answer_not_applied_to_next_prompt(self):
        read_fd, write_fd = os.pipe()
        stdin = os.fdopen(read_fd, 'r')
        try:
            console = ConsolePrompt(stdin=stdin, stdout=io.StringIO())
            with pytest.raises(DecisionTimeout):
                console.decide(request("npm:a"), timeout=0.2)
            os.write(write_fd, b"a\n")
            time.sleep(0.3)
            threading.Timer(0.2, os.write, args=(write_fd, b"d\n")).start()
            assert console.decide(request("npm:b"), timeout=5) == DecisionChoice.DENY
        finally:
            os.close(write_fd)


class TestBulk:

    def test_accept(self):
        console, out = prompt("y\no\n")
        choice = console.decide_bulk([request("npm:a"), request("npm:b")], timeout=5)
        assert choice == DecisionChoice.APPROVE_ONCE
        assert "2 unknown template creators" in out.getvalue()

    def test_decline(self):
        console, _ = prompt("n\n")
        assert console.decide_bulk([request("npm:a"), request("npm:b")], timeout=5) is None
