"""Tests for stockhero/debate.py."""

import asyncio

import pytest

from stockhero.debate import validate_result
from stockhero.errors import InvalidRoundTransition
from stockhero.events import FatalErrorEvent, MessageEvent, PersonaErrorEvent, RoundCompleteEvent
from stockhero.models import GenerationResult, PersonaId, SessionState
from stockhero.personas import DEBATE_ORDER
from stockhero.providers.base import FatalGenerationError, GenerationError, MalformedOutputError
from tests.conftest import ScriptedAdapter


def _result(score=4, target=80000.0, content="ok", risks=None) -> GenerationResult:
    return GenerationResult(content=content, score=score, target_price=target, risks=risks or [])


# --- validate_result ---


def test_validate_result_accepts_valid():
    result = _result()
    assert validate_result(PersonaId.CLAUDE, result) is result


@pytest.mark.parametrize("score", [0, 6, -1, True, 4.5, "4"])
def test_validate_result_rejects_bad_scores(score):
    with pytest.raises(MalformedOutputError):
        validate_result(PersonaId.CLAUDE, _result(score=score))


@pytest.mark.parametrize("target", [0, -5.0, float("nan"), float("inf"), "80000", None])
def test_validate_result_rejects_bad_targets(target):
    with pytest.raises(MalformedOutputError):
        validate_result(PersonaId.GEMINI, _result(target=target))


def test_validate_result_rejects_empty_content():
    with pytest.raises(MalformedOutputError, match="Empty content"):
        validate_result(PersonaId.GPT, _result(content="   "))


def test_validate_result_rejects_non_string_risks():
    with pytest.raises(MalformedOutputError):
        validate_result(PersonaId.GPT, _result(risks=["fine", 3]))


# --- construction ---


def test_orchestrator_requires_all_personas(make_orchestrator, scripted_adapters):
    del scripted_adapters[PersonaId.GPT]
    with pytest.raises(ValueError, match="gpt"):
        make_orchestrator(scripted_adapters)


@pytest.mark.parametrize("price", [0, -1.0, float("nan"), True])
def test_orchestrator_rejects_bad_price(make_orchestrator, scripted_adapters, price):
    with pytest.raises(ValueError):
        make_orchestrator(scripted_adapters, price=price)


def test_new_orchestrator_state(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    assert orch.state == SessionState.CREATED
    assert orch.current_round == 0
    assert orch.get_consensus() is None
    assert orch.has_consensus is False
    assert orch.get_targets().mean is None
    assert orch.is_complete is False


# --- a full round ---


async def test_round_scores_4_5_3(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    events = await orch.run_round()

    messages = [e for e in events if isinstance(e, MessageEvent)]
    assert [e.message.persona for e in messages] == list(DEBATE_ORDER)
    assert [e.message.sequence_index for e in messages] == [0, 1, 2]

    final = events[-1]
    assert isinstance(final, RoundCompleteEvent)
    assert final.round_number == 1
    assert final.consensus_score == pytest.approx(4.0)
    assert final.has_consensus is False
    assert final.is_session_complete is False
    assert final.targets.per_persona == {
        PersonaId.CLAUDE: 80000.0,
        PersonaId.GEMINI: 90000.0,
        PersonaId.GPT: 76000.0,
    }
    assert final.targets.mean == pytest.approx(82000.0)
    assert final.targets.spread_pct == pytest.approx((90000 - 76000) / 82000 * 100)

    assert orch.state == SessionState.ROUND_COMPLETE
    assert orch.current_round == 1
    assert len(orch.messages) == 3


async def test_consensus_within_spread(make_orchestrator):
    adapters = {
        PersonaId.CLAUDE: ScriptedAdapter(PersonaId.CLAUDE, score=4),
        PersonaId.GEMINI: ScriptedAdapter(PersonaId.GEMINI, score=5),
        PersonaId.GPT: ScriptedAdapter(PersonaId.GPT, score=4),
    }
    orch = make_orchestrator(adapters)
    await orch.run_round()
    assert orch.get_consensus() == pytest.approx(13 / 3)
    assert orch.has_consensus is True


async def test_later_personas_see_earlier_messages(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    await orch.run_round()

    claude_req = scripted_adapters[PersonaId.CLAUDE].generate.call_args.args[0]
    gemini_req = scripted_adapters[PersonaId.GEMINI].generate.call_args.args[0]
    gpt_req = scripted_adapters[PersonaId.GPT].generate.call_args.args[0]
    assert claude_req.prior_messages == ()
    assert [m.persona for m in gemini_req.prior_messages] == [PersonaId.CLAUDE]
    assert [m.persona for m in gpt_req.prior_messages] == [PersonaId.CLAUDE, PersonaId.GEMINI]


async def test_second_round_gets_transcript_and_previous_target(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    await orch.run_round()
    await orch.run_round()

    request = scripted_adapters[PersonaId.CLAUDE].generate.call_args.args[0]
    assert request.round_number == 2
    assert len(request.transcript) == 3
    assert request.previous_target == 80000.0
    assert len(orch.round_messages(2)) == 3


async def test_round_number_is_enforced(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    with pytest.raises(InvalidRoundTransition, match="next round is 1"):
        orch.stream_round(round_number=2)
    events = await orch.run_round(round_number=1)
    assert isinstance(events[-1], RoundCompleteEvent)


async def test_max_four_rounds(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    for _ in range(3):
        events = await orch.run_round()
        assert events[-1].is_session_complete is False

    events = await orch.run_round()
    assert events[-1].round_number == 4
    assert events[-1].is_session_complete is True
    assert orch.state == SessionState.COMPLETED
    assert orch.is_complete is True

    with pytest.raises(InvalidRoundTransition):
        orch.stream_round()
    assert scripted_adapters[PersonaId.CLAUDE].generate.await_count == 4


async def test_concurrent_advance_is_rejected(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    stream = orch.stream_round()
    assert orch.state == SessionState.ROUND_ACTIVE

    with pytest.raises(InvalidRoundTransition, match="still in flight"):
        orch.stream_round()

    events = await stream.collect()
    assert isinstance(events[-1], RoundCompleteEvent)
    assert orch.current_round == 1
    assert scripted_adapters[PersonaId.CLAUDE].generate.await_count == 1


async def test_current_price_updates_with_round(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    await orch.stream_round(current_price=72000.0).collect()
    assert orch.current_price == 72000.0
    request = scripted_adapters[PersonaId.GPT].generate.call_args.args[0]
    assert request.current_price == 72000.0


async def test_rejected_round_keeps_price(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    stream = orch.stream_round()
    with pytest.raises(InvalidRoundTransition):
        orch.stream_round(current_price=99000.0)
    assert orch.current_price == 70000.0
    await stream.collect()


# --- per-persona failures ---


async def test_one_persona_fails_round_continues(make_orchestrator, scripted_adapters):
    scripted_adapters[PersonaId.GEMINI].generate.side_effect = GenerationError("gemini", "503 Service Unavailable")
    orch = make_orchestrator(scripted_adapters)

    events = await orch.run_round()

    assert [type(e) for e in events] == [MessageEvent, PersonaErrorEvent, MessageEvent, RoundCompleteEvent]
    error = events[1]
    assert error.persona == PersonaId.GEMINI
    assert "503" in error.reason
    assert events[-1].consensus_score == pytest.approx(3.5)
    assert events[-1].has_consensus is True
    assert PersonaId.GEMINI not in events[-1].targets.per_persona
    assert len(orch.failures) == 1


async def test_failed_persona_keeps_previous_score(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    await orch.run_round()
    scripted_adapters[PersonaId.GEMINI].generate.side_effect = GenerationError("gemini", "down")
    events = await orch.run_round()
    assert events[-1].consensus_score == pytest.approx(4.0)
    assert events[-1].targets.per_persona[PersonaId.GEMINI] == 90000.0


async def test_all_personas_fail(make_orchestrator, scripted_adapters):
    for adapter in scripted_adapters.values():
        adapter.generate.side_effect = GenerationError(adapter.name(), "boom")
    orch = make_orchestrator(scripted_adapters)

    events = await orch.run_round()

    assert [type(e) for e in events] == [PersonaErrorEvent] * 3 + [RoundCompleteEvent]
    final = events[-1]
    assert final.consensus_score is None
    assert final.has_consensus is False
    assert final.targets.mean is None
    assert orch.state == SessionState.ROUND_COMPLETE


async def test_persona_timeout(make_orchestrator, scripted_adapters):
    async def _slow(request):
        await asyncio.sleep(5)

    scripted_adapters[PersonaId.GPT].generate.side_effect = _slow
    orch = make_orchestrator(scripted_adapters)

    events = await orch.run_round(timeout_sec=0.05)

    errors = [e for e in events if isinstance(e, PersonaErrorEvent)]
    assert len(errors) == 1
    assert errors[0].persona == PersonaId.GPT
    assert "Timed out" in errors[0].reason
    assert isinstance(events[-1], RoundCompleteEvent)


async def test_adapter_default_timeout_applies(make_orchestrator, scripted_adapters, monkeypatch):
    async def _slow(request):
        await asyncio.sleep(5)

    claude = scripted_adapters[PersonaId.CLAUDE]
    claude.generate.side_effect = _slow
    monkeypatch.setattr(claude, "timeout_sec", lambda: 0.05)
    orch = make_orchestrator(scripted_adapters)

    events = await orch.run_round()

    assert isinstance(events[0], PersonaErrorEvent)
    assert "Timed out after 0.05s" in events[0].reason


async def test_malformed_output_is_a_persona_error(make_orchestrator, scripted_adapters):
    scripted_adapters[PersonaId.CLAUDE].generate.return_value = _result(score=9)
    orch = make_orchestrator(scripted_adapters)

    events = await orch.run_round()

    assert isinstance(events[0], PersonaErrorEvent)
    assert "outside" in events[0].reason
    assert PersonaId.CLAUDE not in orch.latest_scores


async def test_unexpected_exception_is_a_persona_error(make_orchestrator, scripted_adapters):
    scripted_adapters[PersonaId.CLAUDE].generate.side_effect = RuntimeError("socket closed")
    orch = make_orchestrator(scripted_adapters)
    events = await orch.run_round()
    assert isinstance(events[0], PersonaErrorEvent)
    assert "socket closed" in events[0].reason


async def test_persona_errors_are_logged(make_orchestrator, scripted_adapters, caplog):
    scripted_adapters[PersonaId.GPT].generate.side_effect = GenerationError("gpt", "429")
    orch = make_orchestrator(scripted_adapters)
    await orch.run_round()
    assert any("gpt failed in round 1" in r.getMessage() for r in caplog.records)


# --- fatal errors ---


async def test_fatal_error_ends_round(make_orchestrator, scripted_adapters):
    scripted_adapters[PersonaId.GEMINI].generate.side_effect = FatalGenerationError("Unknown symbol: XXX")
    orch = make_orchestrator(scripted_adapters)

    events = await orch.run_round()

    assert [type(e) for e in events] == [MessageEvent, FatalErrorEvent]
    assert "Unknown symbol" in events[-1].reason
    assert scripted_adapters[PersonaId.GPT].generate.await_count == 0
    assert orch.state == SessionState.ROUND_COMPLETE
    assert orch.current_round == 1


async def test_fatal_error_on_last_round_completes_session(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    for _ in range(3):
        await orch.run_round()
    scripted_adapters[PersonaId.CLAUDE].generate.side_effect = FatalGenerationError("halted")
    events = await orch.run_round()
    assert isinstance(events[-1], FatalErrorEvent)
    assert orch.state == SessionState.COMPLETED


# --- consumer detach ---


async def test_consumer_detach_does_not_stop_round(make_orchestrator, scripted_adapters):
    for adapter in scripted_adapters.values():
        reply = adapter.generate.return_value

        async def _delayed(request, reply=reply):
            await asyncio.sleep(0.01)
            return reply

        adapter.generate.side_effect = _delayed

    orch = make_orchestrator(scripted_adapters)
    stream = orch.stream_round()
    first = await stream.__anext__()
    assert isinstance(first, MessageEvent)

    await stream.aclose()
    assert stream.detached is True
    assert [e async for e in stream] == []

    await stream.wait_finished()
    assert len(orch.messages) == 3
    assert orch.state == SessionState.ROUND_COMPLETE


async def test_close_mid_round_stays_terminal(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    stream = orch.stream_round()
    orch.close()
    await stream.wait_finished()
    assert orch.state == SessionState.TERMINAL
    with pytest.raises(InvalidRoundTransition):
        orch.stream_round()


# --- derived views ---


async def test_snapshot_and_evaluation(make_orchestrator, scripted_adapters):
    orch = make_orchestrator(scripted_adapters)
    await orch.run_round()

    snap = orch.snapshot()
    assert snap["round"] == 1
    assert snap["state"] == "round_complete"
    assert snap["targets"]["perPersona"]["gemini"] == 90000.0
    assert snap["consensus"] == pytest.approx(4.0)
    assert snap["hasConsensus"] is False

    evaluation = orch.to_evaluation(sector="Semiconductors")
    assert evaluation.symbol_id == "005930"
    assert evaluation.avg_score == pytest.approx(4.0)
    assert evaluation.has_unanimous is False
    assert evaluation.risk_flags == ("claude risk", "gemini risk", "gpt risk")
    assert evaluation.sector == "Semiconductors"
