from __future__ import annotations

import json
import unittest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ragchat.api import deps
from ragchat.core.config import PipelineConfig, Settings
from ragchat.main import app
from ragchat.rag.pipeline import RetrievalPipeline
from ragchat.rag.store_gateway import CandidateStoreGateway
from ragchat.rag.streaming import AnswerStreamCoordinator
from ragchat.services.analysis_service import SimilarityAnalysisService
from ragchat.services.chat_service import ChatService
from ragchat.services.rate_limiter import RateLimiter
from ragchat.services.session_service import SessionStore
from ragchat.services.suggestion_service import SuggestionService
from tests.fake_redis import FakeRedis, fake_redis_client
from tests.fakes import SUGGEST, FakeEmbedder, FakeGenerator, FakeStore, hit

HITS = [
    hit("guide.pdf#1", 0.90, "COPD treatment options include inhalers.", source="docs/guide.pdf"),
    hit("weather#1", 0.40, "Tomorrow will be sunny."),
]

QUESTION = {"messages": [{"role": "user", "content": "COPD treatment"}]}


class _FakeVectorClient:
    def __init__(self, healthy: bool = True):
        self.healthy = healthy

    async def ping(self) -> bool:
        return self.healthy


class ChatApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.generator = FakeGenerator(stream_chunks=["Inhalers ", "help."])
        self.store = FakeStore(HITS)
        config = PipelineConfig()
        self.service = ChatService(
            pipeline=RetrievalPipeline(FakeEmbedder(), self.generator, self.store, config=config),
            coordinator=AnswerStreamCoordinator(self.generator, config),
            config=config,
        )
        self.settings = Settings(OPENAI_API_KEY="test-key", ALLOWED_ORIGINS="https://allowed.example")
        self.redis = FakeRedis()
        self.limiter = RateLimiter(fake_redis_client(self.redis), limit=3, window_seconds=60)

        self._engine = create_engine(
            "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        self.session_store = SessionStore(sessionmaker(bind=self._engine))
        self.session_store.create_tables()

        app.dependency_overrides[deps.get_chat_service] = lambda: self.service
        app.dependency_overrides[deps.get_settings] = lambda: self.settings
        app.dependency_overrides[deps.get_rate_limiter] = lambda: self.limiter
        app.dependency_overrides[deps.get_session_store] = lambda: self.session_store
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self._engine.dispose()

    def test_structured_stream(self) -> None:
        body = dict(QUESTION, flags={"structuredStreamEnabled": True}, topK=4)
        resp = self.client.post("/api/v1/chat", json=body)

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("application/x-ndjson"))
        events = [json.loads(line) for line in resp.text.splitlines() if line.strip()]
        self.assertEqual([e["type"] for e in events], ["delta", "delta", "sources"])
        final = events[-1]
        self.assertEqual(final["topKUsed"], 4)
        self.assertEqual([s["identifier"] for s in final["sources"]], ["guide.pdf#1", "weather#1"])
        self.assertEqual([s["usedInContext"] for s in final["sources"]], [True, False])
        self.assertEqual(self.store.calls[0]["limit"], 4)

    def test_compat_stream(self) -> None:
        resp = self.client.post("/api/v1/chat", json=QUESTION)

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("text/plain"))
        self.assertTrue(resp.text.startswith("Inhalers help."))
        self.assertEqual(resp.text.count("<!--sources:"), 1)
        self.assertIn("guide.pdf (similarity: 0.900)", resp.text)

    def test_top_level_flags_are_accepted(self) -> None:
        resp = self.client.post("/api/v1/chat", json=dict(QUESTION, structuredStreamEnabled=True))
        self.assertTrue(resp.headers["content-type"].startswith("application/x-ndjson"))

    def test_no_context_is_still_200(self) -> None:
        self.store.results = [[]]
        resp = self.client.post("/api/v1/chat", json=QUESTION)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "Inhalers help.")

    def test_empty_messages_is_400(self) -> None:
        self.assertEqual(self.client.post("/api/v1/chat", json={"messages": []}).status_code, 400)
        blank = {"messages": [{"role": "user", "content": "   "}]}
        self.assertEqual(self.client.post("/api/v1/chat", json=blank).status_code, 400)
        self.assertEqual(self.store.calls, [])

    def test_missing_or_malformed_body_is_400(self) -> None:
        self.limiter = RateLimiter(fake_redis_client(self.redis), limit=100, window_seconds=60)
        self.assertEqual(self.client.post("/api/v1/chat", json={"messages": None}).status_code, 400)
        self.assertEqual(self.client.post("/api/v1/chat", json={"topK": 3}).status_code, 400)
        self.assertEqual(self.client.post("/api/v1/chat", json=[]).status_code, 400)
        self.assertEqual(
            self.client.post(
                "/api/v1/chat", content=b"not json", headers={"Content-Type": "application/json"}
            ).status_code,
            400,
        )
        self.assertEqual(self.client.post("/api/v1/chat").status_code, 400)
        self.assertEqual(self.client.post("/api/v1/chat", json=dict(QUESTION, topK=0)).status_code, 400)
        self.assertEqual(self.store.calls, [])

    def test_large_top_k_is_accepted(self) -> None:
        resp = self.client.post("/api/v1/chat", json=dict(QUESTION, topK=60))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.store.calls[0]["limit"], 60)

    def test_missing_credentials_is_500_before_retrieval(self) -> None:
        self.settings = Settings(OPENAI_API_KEY="")
        resp = self.client.post("/api/v1/chat", json=QUESTION)
        self.assertEqual(resp.status_code, 500)
        self.assertIn("OPENAI_API_KEY", resp.json()["detail"])
        self.assertEqual(self.store.calls, [])

    def test_disallowed_origin_is_403(self) -> None:
        resp = self.client.post("/api/v1/chat", json=QUESTION, headers={"Origin": "https://evil.example"})
        self.assertEqual(resp.status_code, 403)
        ok = self.client.post("/api/v1/chat", json=QUESTION, headers={"Origin": "https://allowed.example"})
        self.assertEqual(ok.status_code, 200)

    def test_rate_limit_is_429(self) -> None:
        codes = [self.client.post("/api/v1/chat", json=QUESTION).status_code for _ in range(4)]
        self.assertEqual(codes, [200, 200, 200, 429])

    def test_usage_hint(self) -> None:
        resp = self.client.get("/api/v1/chat")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("POST", resp.text)

    def test_suggestions(self) -> None:
        generator = FakeGenerator({SUGGEST: '["What is COPD treatment?"]'})
        app.dependency_overrides[deps.get_suggestion_service] = lambda: SuggestionService(
            FakeStore(samples=[{"text": "COPD treatment"}]), generator
        )
        resp = self.client.get("/api/v1/chat/suggestions", params={"count": 1})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"questions": ["What is COPD treatment?"], "fallback": False})
        self.assertEqual(self.client.get("/api/v1/chat/suggestions", params={"count": 11}).status_code, 422)

    def test_analyze(self) -> None:
        app.dependency_overrides[deps.get_analysis_service] = lambda: SimilarityAnalysisService(
            FakeEmbedder(), CandidateStoreGateway(FakeStore(HITS))
        )
        resp = self.client.post("/api/v1/chat/analyze", json={"query": "COPD treatment", "limit": 5})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["count"], 2)
        self.assertIn("recommendedThreshold", resp.json())

        self.assertEqual(self.client.post("/api/v1/chat/analyze", json={"query": " "}).status_code, 400)

    def test_sessions(self) -> None:
        self.session_store.persist_message("s1", "user", "hello")
        self.session_store.persist_message("s1", "assistant", "hi there", [{"identifier": "k"}])

        sessions = self.client.get("/api/v1/sessions").json()
        messages = self.client.get("/api/v1/sessions/s1/messages").json()

        self.assertEqual(sessions["code"], 200)
        self.assertEqual(sessions["data"][0]["sessionId"], "s1")
        self.assertEqual(sessions["data"][0]["messageCount"], 2)
        self.assertEqual([m["role"] for m in messages["data"]], ["user", "assistant"])
        self.assertEqual(self.client.get("/api/v1/sessions/none/messages").json()["data"], [])

    def test_health(self) -> None:
        app.dependency_overrides[deps.get_vector_client] = lambda: _FakeVectorClient(True)
        healthy = self.client.get("/health")
        self.assertEqual(healthy.status_code, 200)
        self.assertEqual(healthy.json()["status"], "healthy")

        app.dependency_overrides[deps.get_vector_client] = lambda: _FakeVectorClient(False)
        degraded = self.client.get("/health")
        self.assertEqual(degraded.status_code, 503)
        self.assertEqual(degraded.json()["services"]["milvus"]["status"], "down")

    def test_root(self) -> None:
        self.assertEqual(self.client.get("/").json()["status"], "ok")


if __name__ == "__main__":
    unittest.main()
