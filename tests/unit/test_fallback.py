"""Unit tests for priority fallback chains."""

import pytest

from evidence_vault.capture.fallback import FallbackChain, StepOutcome


async def _none():
    return None


async def _boom():
    raise RuntimeError("boom")


def _value(value):
    async def step():
        return value
    return step


class TestFallbackChain:
    """Tests for FallbackChain."""

    @pytest.mark.asyncio
    async def test_first_match_wins(self):
        chain = FallbackChain("test").add("a", _value("A")).add("b", _value("B"))

        result = await chain.run()

        assert result.value == "A"
        assert result.matched_step == "a"
        assert result.matched_first() is True
        assert len(result.attempts) == 1

    @pytest.mark.asyncio
    async def test_falls_through_not_applicable_and_errors(self):
        chain = (
            FallbackChain("test")
            .add("missing", _none)
            .add("broken", _boom)
            .add("last", _value("L"))
        )

        result = await chain.run()

        assert result.value == "L"
        assert result.matched_first() is False
        assert [a.outcome for a in result.attempts] == [
            StepOutcome.NOT_APPLICABLE,
            StepOutcome.ERROR,
            StepOutcome.MATCHED,
        ]
        assert result.errors == ["broken: boom"]

    @pytest.mark.asyncio
    async def test_nothing_matches(self):
        result = await FallbackChain("test").add("a", _none).add("b", _boom).run()

        assert result.value is None
        assert result.matched is False
        assert len(result.attempts) == 2

    @pytest.mark.asyncio
    async def test_arguments_are_passed_to_each_step(self):
        seen = []

        async def record(x, y=None):
            seen.append((x, y))
            return None

        chain = FallbackChain("args").add("one", record).add("two", record)
        await chain.run(1, y=2)

        assert seen == [(1, 2), (1, 2)]

    @pytest.mark.asyncio
    async def test_empty_chain(self):
        chain = FallbackChain("empty")

        result = await chain.run()

        assert len(chain) == 0
        assert result.matched is False
        assert result.matched_first() is False

    def test_repr(self):
        chain = FallbackChain("named").add("a", _none).add("b", _none)
        assert repr(chain) == "FallbackChain(named: a, b)"
