from __future__ import annotations

import unittest

from ragchat.rag.dedup import dedupe
from ragchat.rag.models.candidate import Candidate, Payload


def _candidate(payload: dict, score: float = 0.8, channel: str = "literal") -> Candidate:
    return Candidate.from_hit(score, payload, channel=channel)


class PayloadTestCase(unittest.TestCase):
    def test_text_key_priority_and_metadata(self) -> None:
        p = Payload.from_raw(
            {"content": "body", "page_content": "ignored", "chunk_id": "c-1", "metadata": {"title": "T", "source": "a/b/doc.pdf"}}
        )
        self.assertEqual(p.text, "body")
        self.assertEqual(p.source_key, "c-1")
        self.assertEqual(p.title, "T")
        self.assertEqual(p.display_source, "doc.pdf")
        self.assertIn("metadata", p.extras)

    def test_missing_text_falls_back_to_json(self) -> None:
        p = Payload.from_raw({"foo": "bar"})
        self.assertIn('"foo": "bar"', p.text)
        self.assertIsNone(p.source_key)
        self.assertEqual(p.display_source, "Unknown Source")


class DedupeTestCase(unittest.TestCase):
    def test_first_occurrence_wins_and_order_is_stable(self) -> None:
        hyde = [_candidate({"source_key": "a", "text": "A"}, 0.9, "hyde"), _candidate({"source_key": "b", "text": "B"}, 0.8, "hyde")]
        literal = [_candidate({"source_key": "b", "text": "B"}, 0.95), _candidate({"source_key": "c", "text": "C"}, 0.7)]

        result = dedupe(hyde + literal)

        self.assertEqual([c.identifier for c in result], ["a", "b", "c"])
        self.assertEqual(result[1].channel, "hyde")
        self.assertAlmostEqual(result[1].raw_score, 0.8)

    def test_identity_without_source_key_uses_payload_hash(self) -> None:
        first = _candidate({"text": "same passage", "title": "x"})
        second = _candidate({"text": "same passage", "title": "x"})
        other = _candidate({"text": "another passage"})

        result = dedupe([first, second, other])

        self.assertEqual(len(result), 2)
        self.assertEqual(first, second)
        self.assertNotEqual(first, other)

    def test_idempotent(self) -> None:
        pool = [_candidate({"source_key": k, "text": k}) for k in ["a", "b", "a", "c", "b"]]
        once = dedupe(pool)
        self.assertEqual(dedupe(once), once)

    def test_does_not_mutate_input(self) -> None:
        pool = [_candidate({"source_key": "a", "text": "A"}), _candidate({"source_key": "a", "text": "A"})]
        dedupe(pool)
        self.assertEqual(len(pool), 2)


if __name__ == "__main__":
    unittest.main()
