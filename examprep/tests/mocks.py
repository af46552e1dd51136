import httpx

from examprep.core.config import Settings
from examprep.features.ai.retry import RetryPolicy
from examprep.features.ai.service import AIOrchestrator

OLLAMA_TAGS = "http://localhost:11434/api/tags"
OLLAMA_CHAT = "http://localhost:11434/api/chat"
DEEPSEEK_CHAT = "https://api.deepseek.com/v1/chat/completions"
OPENAI_CHAT = "https://api.openai.com/v1/chat/completions"


def hosted_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": text}}]})


def local_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"message": {"role": "assistant", "content": text}})


def connect_error(request: httpx.Request):
    raise httpx.ConnectError("connection refused", request=request)


def read_timeout(request: httpx.Request):
    raise httpx.ReadTimeout("timed out", request=request)


class FakeUpstream:
    """MockTransport handler replaying queued responses per URL."""

    def __init__(self):
        self.queues = {}
        self.requests = []

    def add(self, url: str, *items):
        self.queues.setdefault(url, []).extend(items)
        return self

    def calls_to(self, url: str):
        return [r for r in self.requests if str(r.url) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.queues.get(str(request.url))
        if not queue:
            raise AssertionError(f"unexpected request to {request.url}")
        item = queue.pop(0)
        if callable(item):
            return item(request)
        return item


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_orchestrator(
    upstream: FakeUpstream,
    *,
    preferred: str = "ollama",
    fallback: str = "deepseek",
    deepseek_key="ds-test",
    openai_key="oa-test",
    policy: RetryPolicy = None,
):
    cfg = Settings(
        _env_file=None,
        AI_PROVIDER=preferred,
        AI_FALLBACK_PROVIDER=fallback,
        DEEPSEEK_API_KEY=deepseek_key,
        OPENAI_API_KEY=openai_key,
    )
    sleep = RecordingSleep()
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    orchestrator = AIOrchestrator(cfg=cfg, client=client, sleep=sleep, policy=policy)
    return orchestrator, sleep


class FakeOrchestrator:
    """Stands in for AIOrchestrator behind the API dependency."""

    def __init__(self, reply: str = "Ответ репетитора", error: Exception = None, local_up: bool = False):
        self.reply = reply
        self.error = error
        self.local_up = local_up
        self.calls = []

    async def call(self, messages, max_tokens=1000, temperature=0.7):
        self.calls.append({"messages": messages, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return self.reply

    async def probe_local(self, provider=None):
        return self.local_up

    async def aclose(self):
        return None
