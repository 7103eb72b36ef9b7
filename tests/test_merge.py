# tests/test_merge.py
import asyncio

from dualocr.exceptions import ServiceUnavailable
from dualocr.merge import reconcile
from dualocr.models import RefineStatus, SecondaryResult

from tests.fakes import FakeSecondary


def _reconcile(primary, secondary, merger=None):
    return asyncio.run(reconcile(primary, secondary, merger or FakeSecondary(), "kor"))


def test_both_present_delegates_to_merge():
    merger = FakeSecondary(merged="ABC")
    outcome = _reconcile("ABC", SecondaryResult(text="ABD"), merger)
    assert outcome.status is RefineStatus.DONE
    assert outcome.current_text == outcome.merged_text == "ABC"
    assert merger.log == [("merge", "ABC", "ABD")]


def test_empty_merge_reply_keeps_primary():
    outcome = _reconcile("ABC", SecondaryResult(text="ABD"), FakeSecondary(merged="   "))
    assert outcome.status is RefineStatus.DONE
    assert outcome.current_text == "ABC"


def test_failed_secondary_keeps_primary():
    merger = FakeSecondary()
    outcome = _reconcile("ABC", SecondaryResult(error="RemoteError: timeout"), merger)
    assert outcome.status is RefineStatus.FAILED
    assert outcome.current_text == "ABC"
    assert outcome.merged_text is None
    assert "timeout" in outcome.reason
    assert merger.log == []


def test_empty_secondary_keeps_primary():
    outcome = _reconcile("ABC", SecondaryResult(text=""))
    assert outcome.status is RefineStatus.FAILED
    assert outcome.current_text == "ABC"


def test_missing_secondary_result():
    outcome = _reconcile("ABC", None)
    assert outcome.status is RefineStatus.FAILED


def test_empty_primary_adopts_secondary():
    merger = FakeSecondary()
    outcome = _reconcile("", SecondaryResult(text="XYZ"), merger)
    assert outcome.status is RefineStatus.DONE
    assert outcome.current_text == outcome.merged_text == "XYZ"
    assert merger.log == []


def test_both_empty_fails_with_empty_text():
    outcome = _reconcile("", SecondaryResult(text=""))
    assert outcome.status is RefineStatus.FAILED
    assert outcome.current_text == ""


def test_merge_errors_are_recovered():
    outcome = _reconcile("ABC", SecondaryResult(text="ABD"), FakeSecondary(fail_merge=True))
    assert outcome.status is RefineStatus.FAILED
    assert outcome.current_text == "ABC"

    class NoKey:
        async def merge(self, primary_text, secondary_text, language="kor"):
            raise ServiceUnavailable("Gemini API key is not configured")

    outcome = _reconcile("ABC", SecondaryResult(text="ABD"), NoKey())
    assert outcome.status is RefineStatus.FAILED
    assert "not configured" in outcome.reason
