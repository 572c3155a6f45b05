from streamscribe.domain.models import RecognitionResult
from streamscribe.domain.transcript import Transcript, compose_text


def interim(text: str) -> RecognitionResult:
    return RecognitionResult(text=text, is_final=False)


def final(text: str, start: float | None = None) -> RecognitionResult:
    return RecognitionResult(text=text, is_final=True, start_seconds=start)


class TestComposeText:
    def test_empty_pending_returns_committed(self):
        assert compose_text("hello", "") == "hello"

    def test_joins_with_single_space(self):
        assert compose_text("hello", "wor") == "hello wor"

    def test_empty_committed_is_trimmed(self):
        assert compose_text("", "wor") == "wor"


class TestTranscript:
    def test_interims_replace_pending(self):
        transcript = Transcript()
        transcript.apply(interim("hel"))
        transcript.apply(interim("hello"))

        assert transcript.pending == "hello"
        assert transcript.committed == ""
        assert transcript.live_preview == "hello"

    def test_final_commits_and_clears_pending(self):
        transcript = Transcript()
        transcript.apply(interim("hel"))
        transcript.apply(interim("hello"))
        transcript.apply(final("hello world", start=0.0))

        assert transcript.committed == "hello world"
        assert transcript.pending == ""
        assert transcript.final_text() == "hello world"

    def test_finals_are_space_joined(self):
        transcript = Transcript()
        transcript.apply(final("hello", start=0.0))
        transcript.apply(final("there", start=1.2))

        assert transcript.committed == "hello there"

    def test_pending_included_in_final_text(self):
        transcript = Transcript()
        transcript.apply(final("hello", start=0.0))
        transcript.apply(interim("wor"))

        assert transcript.final_text() == "hello wor"

    def test_empty_final_clears_pending_without_commit(self):
        transcript = Transcript()
        transcript.apply(interim("uh"))
        transcript.apply(final(""))

        assert transcript.committed == ""
        assert transcript.pending == ""

    def test_replayed_final_is_ignored(self):
        transcript = Transcript()
        transcript.apply(final("hello", start=0.0))

        assert transcript.apply(final("hello", start=0.0)) is False
        assert transcript.committed == "hello"

    def test_same_text_at_new_offset_is_committed(self):
        transcript = Transcript()
        transcript.apply(final("yes", start=0.0))
        transcript.apply(final("yes", start=2.0))

        assert transcript.committed == "yes yes"

    def test_committed_only_grows(self):
        transcript = Transcript()
        seen = []
        for result in [interim("a"), final("a b", 0.0), interim("c"), interim(""), final("c d", 1.0)]:
            transcript.apply(result)
            seen.append(transcript.committed)

        for before, after in zip(seen, seen[1:]):
            assert after.startswith(before)

    def test_unchanged_interim_reports_no_change(self):
        transcript = Transcript()
        assert transcript.apply(interim("hi")) is True
        assert transcript.apply(interim("hi")) is False

    def test_reset(self):
        transcript = Transcript()
        transcript.apply(final("hello", 0.0))
        transcript.apply(interim("x"))
        transcript.reset()

        assert transcript.final_text() == ""
        assert transcript.apply(final("hello", 0.0)) is True
