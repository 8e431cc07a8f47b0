import json
from unittest import mock

import pytest
import requests

from elara.backend import BackendClient
from elara.errors import BackendError, LLMError
from elara.llm import (
    ChainMarkupFilter,
    ChatCompletionsClient,
    parse_tool_calls,
    unpack_assistant_message,
)
from elara.session import AuthSession


def _response(status_code: int = 200, body=None, text: str = None) -> mock.Mock:
    response = mock.Mock(spec=requests.Response)
    response.status_code = status_code
    if text is None:
        text = json.dumps(body) if body is not None else ""
    response.text = text
    response.content = text.encode("utf-8")
    if body is not None:
        response.json.return_value = body
    else:
        response.json.side_effect = ValueError("not json")
    return response


def test_backend_forwards_bearer_token_and_json_body() -> None:
    client = BackendClient("http://backend.test/", timeout=4)
    with mock.patch("elara.backend.requests.request", return_value=_response(body={"output": {}})) as call:
        client.get_recommendations(
            "headache", AuthSession(token="abc", username="ada"), edible_mode=True
        )
    method, url = call.call_args.args
    kwargs = call.call_args.kwargs
    assert (method, url) == ("POST", "http://backend.test/getRecommendations")
    assert kwargs["headers"] == {"Authorization": "Bearer abc", "Content-Type": "application/json"}
    assert json.loads(kwargs["data"]) == {"medicalConcern": "headache", "edibleMode": True}
    assert kwargs["timeout"] == 4


def test_backend_omits_edible_flag_and_token_when_absent() -> None:
    client = BackendClient("http://backend.test")
    with mock.patch("elara.backend.requests.request", return_value=_response(body={})) as call:
        client.get_recommendations("headache")
    kwargs = call.call_args.kwargs
    assert "Authorization" not in kwargs["headers"]
    assert json.loads(kwargs["data"]) == {"medicalConcern": "headache"}


def test_backend_login_posts_form_data() -> None:
    client = BackendClient("http://backend.test")
    with mock.patch(
        "elara.backend.requests.request", return_value=_response(body={"access_token": "t"})
    ) as call:
        assert client.login("ada", "secret1") == {"access_token": "t"}
    kwargs = call.call_args.kwargs
    assert kwargs["data"] == {"username": "ada", "password": "secret1"}
    assert "Content-Type" not in kwargs["headers"]


def test_backend_quotes_recipe_ids() -> None:
    client = BackendClient("http://backend.test")
    with mock.patch("elara.backend.requests.request", return_value=_response(text="")) as call:
        assert client.delete_recipe("a/b", AuthSession(token="t")) == {}
    assert call.call_args.args == ("DELETE", "http://backend.test/deleteRecipe/a%2Fb")


def test_backend_error_carries_status_and_detail() -> None:
    client = BackendClient("http://backend.test")
    with mock.patch(
        "elara.backend.requests.request",
        return_value=_response(401, body={"detail": "Could not validate credentials"}),
    ):
        with pytest.raises(BackendError) as excinfo:
            client.get_saved_recipes(AuthSession(token="stale"))
    assert excinfo.value.status_code == 401
    assert "Could not validate credentials" in excinfo.value.detail


def test_backend_unreachable_and_non_json() -> None:
    client = BackendClient("http://backend.test")
    with mock.patch(
        "elara.backend.requests.request", side_effect=requests.ConnectionError("refused")
    ):
        with pytest.raises(BackendError) as excinfo:
            client.get_recipe("Sage", "Salvia officinalis")
    assert excinfo.value.status_code is None

    with mock.patch("elara.backend.requests.request", return_value=_response(text="<html>")):
        with pytest.raises(BackendError):
            client.get_recipe("Sage", "Salvia officinalis")

    with mock.patch("elara.backend.requests.request", return_value=_response(body=[1, 2])):
        with pytest.raises(BackendError):
            client.get_recipe("Sage", "Salvia officinalis")


def test_backend_health() -> None:
    client = BackendClient("http://backend.test")
    with mock.patch("elara.backend.requests.get", return_value=_response(404, text="nope")):
        assert client.healthy() is True
    with mock.patch("elara.backend.requests.get", side_effect=requests.Timeout("slow")):
        assert client.healthy() is False


def _stream_response(lines) -> mock.Mock:
    response = _response(body={})
    response.iter_lines.return_value = [line.encode("utf-8") for line in lines]
    return response


def test_stream_chat_assembles_text_and_tool_calls() -> None:
    lines = [
        'data: {"choices": [{"delta": {"content": "Chamo"}}]}',
        "",
        'data: {"choices": [{"delta": {"content": "mile ☕"}}]}',
        'data: {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "c1", "function": {"name": "generateRecipe", "arguments": "{\\"plantName\\": "}}]}}]}',
        'data: {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "\\"Chamomile\\"}"}}]}, "finish_reason": "tool_calls"}]}',
        "data: [DONE]",
    ]
    client = ChatCompletionsClient("http://llm.test/v1/chat/completions", api_key="key")
    with mock.patch("elara.llm.requests.post", return_value=_stream_response(lines)) as post:
        chunks = list(client.stream_chat(model="m", messages=[{"role": "user", "content": "hi"}]))

    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer key"
    assert post.call_args.kwargs["stream"] is True
    assert [chunk["text"] for chunk in chunks if chunk["type"] == "text"] == ["Chamo", "mile ☕"]
    final = chunks[-1]
    assert final["type"] == "message"
    assert final["finish_reason"] == "tool_calls"
    assert final["message"]["content"] == "Chamomile ☕"
    assert parse_tool_calls(final["message"]) == [
        {"id": "c1", "name": "generateRecipe", "arguments": {"plantName": "Chamomile"}}
    ]


def test_stream_chat_rejects_malformed_chunk() -> None:
    client = ChatCompletionsClient("http://llm.test/v1/chat/completions")
    with mock.patch("elara.llm.requests.post", return_value=_stream_response(["data: {oops"])):
        with pytest.raises(LLMError):
            list(client.stream_chat(model="m", messages=[]))


def test_chat_reports_provider_errors() -> None:
    client = ChatCompletionsClient("http://llm.test/v1/chat/completions")
    with mock.patch("elara.llm.requests.post", return_value=_response(503, text="overloaded")):
        with pytest.raises(LLMError) as excinfo:
            client.chat(model="m", messages=[])
    assert "503" in str(excinfo.value)

    with mock.patch("elara.llm.requests.post", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(LLMError):
            client.chat(model="m", messages=[])


def test_parse_tool_calls_tolerates_bad_arguments() -> None:
    calls = parse_tool_calls(
        {
            "tool_calls": [
                {"function": {"name": "findHerbalRemedies", "arguments": "not json"}},
                {"id": "c2", "function": {"name": "getSavedRecipes", "arguments": {}}},
            ]
        }
    )
    assert calls[0]["arguments"] == {"_raw": "not json"}
    assert calls[0]["id"]
    assert calls[1] == {"id": "c2", "name": "getSavedRecipes", "arguments": {}}


def test_unpack_assistant_message_splits_reasoning() -> None:
    text, reasoning = unpack_assistant_message(
        {"content": "<think>user wants tea</think>Try chamomile.", "reasoning": "short"}
    )
    assert text == "Try chamomile."
    assert reasoning == ["user wants tea", "short"]


@pytest.mark.parametrize(
    "pieces, visible, reasoning",
    [
        (["<think>plan</think>Hello"], "Hello", ["plan"]),
        (["<thi", "nk>plan</th", "ink>Hel", "lo"], "Hello", ["plan"]),
        (["Hi <REASONING>x</reasoning>there"], "Hi there", ["x"]),
        (["a < b and c <", "= d"], "a < b and c <= d", []),
        (["Answer<think>never closed"], "Answer", ["never closed"]),
    ],
)
def test_chain_markup_filter_handles_split_tags(pieces, visible, reasoning) -> None:
    markup = ChainMarkupFilter()
    text = "".join(markup.feed(piece) for piece in pieces) + markup.flush()
    assert text == visible
    assert markup.reasoning == reasoning
