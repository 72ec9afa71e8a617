"""Tests for AI response parsing and the triage/generate contracts."""

import json
from types import SimpleNamespace

import pytest

from hostfix.errors import AIResponseError, CapabilityError
from hostfix.fixes.schemas import FixComplexity, SourceFile, TriageResult
from hostfix.integrations.ai import AIClient, load_prompts, parse_llm_json_response


class StubMessages:
    def __init__(self, text):
        self.text = text
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=self.text)],
            usage=SimpleNamespace(input_tokens=10, output_tokens=20),
        )


def client_returning(text):
    messages = StubMessages(text)
    return AIClient(client=SimpleNamespace(messages=messages)), messages


TRIAGE = {
    "complexity": "simple",
    "summary": "Fix button colour",
    "affected_files": ["src/Button.tsx"],
    "confidence": 0.8,
    "estimated_changes": 3,
    "reasoning": "CSS only",
}


class TestParseJson:
    def test_plain(self):
        assert parse_llm_json_response('{"a": 1}') == {"a": 1}

    def test_fenced(self):
        assert parse_llm_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_surrounding_prose(self):
        assert parse_llm_json_response('Here you go: {"a": 1} Hope it helps') == {"a": 1}

    def test_garbage(self):
        with pytest.raises(json.JSONDecodeError):
            parse_llm_json_response("no json here")


def test_prompts_load():
    prompts = load_prompts()
    assert prompts["triage"]["system"]
    assert prompts["generate"]["max_tokens"] > prompts["triage"]["max_tokens"]


def test_triage_parses_result():
    client, messages = client_returning("```json\n" + json.dumps(TRIAGE) + "\n```")

    result = client.triage("Button is the wrong colour", ["src/Button.tsx", "src/App.tsx"])

    assert result.complexity == FixComplexity.SIMPLE
    assert result.affected_files == ["src/Button.tsx"]
    assert "src/App.tsx" in messages.requests[0]["messages"][0]["content"]


def test_triage_unparseable_raises():
    client, _ = client_returning("I'm not sure what you mean")
    with pytest.raises(AIResponseError):
        client.triage("Button is the wrong colour", [])


def test_triage_schema_mismatch_raises():
    client, _ = client_returning(json.dumps({"complexity": "trivial", "confidence": 3}))
    with pytest.raises(AIResponseError):
        client.triage("Button is the wrong colour", [])


def test_generate_success():
    fix = {
        "success": True,
        "changes": [{"file_path": "src/Button.tsx", "action": "modify", "new_content": "x"}],
        "explanation": "Changed colour",
    }
    client, _ = client_returning(json.dumps(fix))

    result = client.generate("Button colour", TriageResult(**TRIAGE), [SourceFile(path="src/Button.tsx", content="y")])

    assert result.success
    assert result.changes[0].file_path == "src/Button.tsx"


def test_generate_not_json_is_unsuccessful():
    client, _ = client_returning("Sorry, I cannot help with that.")
    result = client.generate("Button colour", TriageResult(**TRIAGE), [])
    assert result.success is False
    assert result.error == "AI response was not valid JSON"


def test_generate_without_changes_is_unsuccessful():
    client, _ = client_returning(json.dumps({"success": True, "changes": []}))
    result = client.generate("Button colour", TriageResult(**TRIAGE), [])
    assert result.success is False


def test_no_api_key():
    with pytest.raises(CapabilityError):
        AIClient().triage("Button colour", [])
