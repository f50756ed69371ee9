from core.models import ApplyResult, MessageOutcome, RunSummary, message_id_key


def test_message_id_key_handles_large_ids() -> None:
    assert message_id_key(" 18446744073709551617 ") == 18446744073709551617
    assert message_id_key("99") < message_id_key("100")


def test_run_summary_record() -> None:
    summary = RunSummary(source_key="@league")
    prior = object()

    summary.record(MessageOutcome("applied", parsed=True, result=ApplyResult(ok=True, applied_new=True)))
    summary.record(
        MessageOutcome("applied", parsed=True, result=ApplyResult(ok=True, applied_new=True, prior_receipt=prior))
    )
    summary.record(MessageOutcome("no_change", parsed=True, result=ApplyResult(ok=True, no_change=True)))
    summary.record(MessageOutcome("protected", parsed=True, result=ApplyResult(ok=False, reason="protected")))
    summary.record(MessageOutcome("skip_banner"))
    summary.record(MessageOutcome("error"))

    assert (summary.seen, summary.parsed) == (6, 4)
    assert (summary.applied, summary.new, summary.edits, summary.no_change) == (2, 1, 1, 1)
    assert summary.errors == 1
    assert summary.skipped == {"protected": 1, "skip_banner": 1}
